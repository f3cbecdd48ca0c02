"""
Moolre gateway client.

Maps the transact endpoints (validate, transfer, status) and the SMS endpoint
to typed results. Every response goes through the same parsing step: the body
must be a JSON object and its ``status`` discriminator, normalized, must be 1.
"""

import asyncio
import json
import re
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx
from loguru import logger

from moolre.config import Settings, setting
from moolre.errors import ConfigurationError, UpstreamError, UpstreamFormatError, ValidationError
from moolre.models import (
    Channel,
    IdKind,
    NotificationOutcome,
    NotificationResult,
    TransferOutcome,
    TransferRequest,
    TransferStatus,
    ValidationResult,
    normalize_status,
)

VALIDATE_PATH = "/open/transact/validate"
TRANSFER_PATH = "/open/transact/transfer"
STATUS_PATH = "/open/transact/status"
SMS_PATH = "/open/sms/send"


def first_present(data: dict, *keys: str) -> Any:
    """Return the first value among ``keys`` that is neither absent nor empty."""
    for key in keys:
        value = data.get(key)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


def join_message(message: Any) -> str:
    if isinstance(message, list):
        return ". ".join(str(part) for part in message)
    return "" if message is None else str(message)


def strip_whitespace(value: str) -> str:
    return re.sub(r"\s", "", value or "")


def _to_decimal(value: Any) -> Decimal | None:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def validate_payload(channel: Channel, recipient: str, routing_code: str | None, currency: str, account_number: str) -> dict:
    payload = {
        "type": 1,
        "receiver": recipient,
        "channel": str(int(channel)),
        "currency": currency,
        "accountnumber": account_number,
    }
    if channel.is_bank and routing_code:
        payload["sublistid"] = routing_code
    return payload


def transfer_payload(request: TransferRequest, account_number: str) -> dict:
    return {
        "type": 1,
        "channel": str(int(request.channel)),
        "currency": request.currency,
        "receiver": request.recipient,
        "amount": request.formatted_amount,
        "externalref": request.external_reference,
        "reference": request.description or request.reference or "",
        "accountnumber": account_number,
        "sublistid": request.routing_code if request.channel.is_bank and request.routing_code else "",
    }


def status_payload(identifier: str, id_kind: IdKind, account_number: str) -> dict:
    id_value: int | str = identifier
    if id_kind is IdKind.TRANSACTION_ID:
        try:
            id_value = int(identifier)
        except (TypeError, ValueError):
            id_value = identifier
    return {
        "type": 1,
        "idtype": id_kind.idtype,
        "id": id_value,
        "accountnumber": account_number,
    }


class MoolreClient:
    def __init__(self, settings: Settings | None = None, http_client: httpx.AsyncClient | None = None):
        self.settings = settings or setting
        self._http_client = http_client

    def _require(self, missing: list[str]):
        if missing:
            logger.error(f"Moolre configuration missing: {missing}")
            raise ConfigurationError(missing)

    def _transact_headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "X-API-USER": self.settings.api_user,
            "X-API-KEY": self.settings.api_key,
        }

    def _sms_headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "X-API-VASKEY": self.settings.sms_api_key,
        }

    async def _post(self, path: str, payload: dict, headers: dict[str, str]) -> tuple[dict, int]:
        url = f"{self.settings.api_base_url.rstrip('/')}{path}"
        logger.debug(f"POST {url}")
        if self._http_client is not None:
            response = await self._http_client.post(url, json=payload, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=self.settings.request_timeout) as client:
                response = await client.post(url, json=payload, headers=headers)
        logger.debug(f"Response from {path}: HTTP {response.status_code}")
        return self._parse(response), response.status_code

    @staticmethod
    def _parse(response: httpx.Response) -> dict:
        text = response.text
        try:
            data = json.loads(text)
        except ValueError:
            logger.warning(f"Non-JSON response from gateway (HTTP {response.status_code})")
            raise UpstreamFormatError(response.status_code, text)
        if not isinstance(data, dict):
            raise UpstreamFormatError(response.status_code, text)

        status = normalize_status(data.get("status"))
        if status != 1:
            message = join_message(data.get("message")) or "Request was not successful"
            logger.warning(f"Gateway rejected request: status={data.get('status')!r}, message={message}")
            raise UpstreamError(response.status_code, message, status=status, payload=data)
        return data

    async def validate_account(
        self,
        channel: Channel,
        recipient: str,
        routing_code: str | None = None,
        currency: str | None = None,
    ) -> ValidationResult:
        """Resolve the account holder name behind a bank account or wallet number."""
        self._require(self.settings.missing_transact_credentials())
        payload = validate_payload(
            channel, recipient, routing_code, currency or self.settings.default_currency, self.settings.account_number
        )
        data, _ = await self._post(VALIDATE_PATH, payload, self._transact_headers())

        account_name = data.get("data") if isinstance(data.get("data"), str) else None
        account_name = account_name.strip() if account_name and account_name.strip() else None
        return ValidationResult(
            account_name=account_name,
            valid=account_name is not None,
            message=join_message(data.get("message")) or "Account name validated successfully",
        )

    async def disburse(self, request: TransferRequest) -> TransferOutcome:
        """Submit a transfer and map the gateway's immediate answer."""
        self._require(self.settings.missing_transact_credentials())
        payload = transfer_payload(request, self.settings.account_number)
        logger.info(
            f"Disbursing {request.currency} {request.formatted_amount} via {request.channel.name}, "
            f"externalref={request.external_reference}"
        )
        data, status_code = await self._post(TRANSFER_PATH, payload, self._transact_headers())

        body = data.get("data")
        if not isinstance(body, dict) or first_present(body, "transactionid") is None:
            raise UpstreamError(status_code, "Transfer response carried no transaction data", status=1, payload=data)

        txstatus = body.get("txstatus")
        return TransferOutcome(
            transaction_id=str(body["transactionid"]),
            external_reference=str(first_present(body, "externalref") or request.external_reference),
            status=TransferStatus.from_txstatus(txstatus),
            amount=request.amount,
            currency=request.currency,
            message=join_message(data.get("message")),
            txstatus=normalize_status(txstatus),
        )

    async def check_status(self, identifier: str, id_kind: IdKind = IdKind.TRANSACTION_ID) -> TransferOutcome:
        """Fetch the current state of a transfer by transaction id or external reference."""
        self._require(self.settings.missing_transact_credentials())
        if not identifier:
            raise ValidationError("A transaction id or external reference is required")
        payload = status_payload(identifier, id_kind, self.settings.account_number)
        data, status_code = await self._post(STATUS_PATH, payload, self._transact_headers())

        body = data.get("data")
        if not isinstance(body, dict):
            raise UpstreamError(status_code, "Status response carried no transaction data", status=1, payload=data)

        transaction_id = first_present(body, "transactionid")
        external_reference = first_present(body, "externalref")
        if transaction_id is None and id_kind is IdKind.TRANSACTION_ID:
            transaction_id = identifier
        if external_reference is None and id_kind is IdKind.EXTERNAL_REFERENCE:
            external_reference = identifier

        receiver = first_present(body, "receiver", "payee")
        receiver_name = first_present(body, "receivername")
        txstatus = body.get("txstatus")
        return TransferOutcome(
            transaction_id=None if transaction_id is None else str(transaction_id),
            external_reference=None if external_reference is None else str(external_reference),
            status=TransferStatus.from_txstatus(txstatus),
            amount=_to_decimal(first_present(body, "amount", "value")),
            currency=first_present(body, "currency"),
            message=join_message(data.get("message")),
            receiver=None if receiver is None else str(receiver),
            receiver_name=None if receiver_name is None else str(receiver_name),
            txstatus=normalize_status(txstatus),
        )

    async def send_sms(self, recipient: str, body: str, sender_id: str | None = None) -> NotificationResult:
        """Send one SMS. Raises on configuration, format and upstream errors."""
        self._require(self.settings.missing_sms_credentials())
        phone = strip_whitespace(recipient)
        if not phone or not body:
            raise ValidationError("Both recipient and message are required")

        payload = {
            "type": 1,
            "senderid": (sender_id or "").strip() or self.settings.sms_sender_id,
            "messages": [{"recipient": phone, "message": body}],
        }
        data, _ = await self._post(SMS_PATH, payload, self._sms_headers())

        nested = data.get("data") if isinstance(data.get("data"), dict) else {}
        message_id = first_present(data, "messageId", "messageid") or first_present(nested, "messageId", "messageid", "id")
        logger.info(f"SMS accepted for {phone}")
        return NotificationResult(
            recipient=phone,
            outcome=NotificationOutcome.SENT,
            message_id=None if message_id is None else str(message_id),
        )

    async def send_sms_batch(
        self, messages: list[tuple[str, str]], sender_id: str | None = None
    ) -> list[NotificationResult]:
        """Send one request per (recipient, body) pair, returning one result per entry in input order."""
        self._require(self.settings.missing_sms_credentials())

        async def send_one(recipient: str, body: str) -> NotificationResult:
            try:
                return await self.send_sms(recipient, body, sender_id)
            except (UpstreamError, UpstreamFormatError, ValidationError, httpx.HTTPError) as exc:
                logger.warning(f"SMS to {recipient} failed: {exc}")
                return NotificationResult(
                    recipient=strip_whitespace(recipient),
                    outcome=NotificationOutcome.FAILED,
                    error=str(exc) or exc.__class__.__name__,
                )

        return list(await asyncio.gather(*(send_one(recipient, body) for recipient, body in messages)))
