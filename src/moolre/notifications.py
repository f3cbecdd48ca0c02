import asyncio
import re
from decimal import Decimal

import httpx
from loguru import logger
from pydantic import BaseModel

from moolre.client import MoolreClient, strip_whitespace
from moolre.errors import MoolreError
from moolre.models import NotificationOutcome, NotificationResult, TransferOutcome

PHONE_PATTERN = re.compile(r"^\+?[1-9]\d{1,14}$")


def is_valid_phone(phone: str | None) -> bool:
    return bool(phone) and PHONE_PATTERN.match(strip_whitespace(phone)) is not None


class Participants(BaseModel):
    """Who gets told about a transfer, and the holder name the operator entered."""

    account_name: str | None = None
    recipient_phone: str | None = None
    sender_phone: str | None = None


def _amount(amount: Decimal | str | None) -> str:
    if isinstance(amount, Decimal):
        return f"{amount:.2f}"
    return "" if amount is None else str(amount)


def recipient_success_message(currency: str, amount, transaction_id: str, reference: str | None = None) -> str:
    ref = f". Ref: {reference}" if reference else ""
    return f"You have received {currency} {_amount(amount)}{ref}. Transaction ID: {transaction_id}"


def sender_success_message(
    currency: str, amount, account_name: str | None, transaction_id: str, reference: str | None = None
) -> str:
    ref = f" Ref: {reference}" if reference else ""
    return (
        f"Your transfer of {currency} {_amount(amount)} to {account_name or 'the recipient'} "
        f"has been successfully processed. Transaction ID: {transaction_id}.{ref}"
    )


def recipient_failure_message(currency: str, amount, transaction_id: str, reference: str | None = None) -> str:
    ref = f" (Ref: {reference})" if reference else ""
    return (
        f"A transfer attempt of {currency} {_amount(amount)}{ref} was made to your account "
        f"but failed due to insufficient balance. Transaction ID: {transaction_id}"
    )


class NotificationDispatcher:
    """Sends the outcome SMS for a transfer, one independent send per phone."""

    def __init__(self, client: MoolreClient, sender_id: str | None = None):
        self.client = client
        self.sender_id = sender_id

    async def notify_success(
        self, outcome: TransferOutcome, participants: Participants, reference: str | None = None
    ) -> list[NotificationResult]:
        transaction_id = outcome.transaction_id or outcome.external_reference or ""
        sends = []
        if is_valid_phone(participants.recipient_phone):
            sends.append(
                (
                    participants.recipient_phone,
                    recipient_success_message(
                        outcome.currency, outcome.amount, transaction_id, reference
                    ),
                )
            )
        if is_valid_phone(participants.sender_phone):
            sends.append(
                (
                    participants.sender_phone,
                    sender_success_message(
                        outcome.currency,
                        outcome.amount,
                        participants.account_name,
                        transaction_id,
                        reference,
                    ),
                )
            )
        return await self._dispatch_all(sends)

    async def notify_failure(
        self, outcome: TransferOutcome, participants: Participants, reference: str | None = None
    ) -> list[NotificationResult]:
        if not is_valid_phone(participants.recipient_phone):
            logger.info("No valid recipient phone, skipping failure notification")
            return []
        transaction_id = outcome.transaction_id or outcome.external_reference or ""
        body = recipient_failure_message(outcome.currency, outcome.amount, transaction_id, reference)
        return await self._dispatch_all([(participants.recipient_phone, body)])

    async def _dispatch_all(self, sends: list[tuple[str, str]]) -> list[NotificationResult]:
        return list(await asyncio.gather(*(self._dispatch(phone, body) for phone, body in sends)))

    async def _dispatch(self, phone: str, body: str) -> NotificationResult:
        try:
            return await self.client.send_sms(phone, body, self.sender_id)
        except (MoolreError, httpx.HTTPError) as exc:
            logger.warning(f"Notification to {phone} failed: {exc}")
            return NotificationResult(
                recipient=strip_whitespace(phone),
                outcome=NotificationOutcome.FAILED,
                error=str(exc) or exc.__class__.__name__,
            )
