from decimal import Decimal

import httpx
import pytest

from moolre.client import MoolreClient, status_payload, transfer_payload
from moolre.config import Settings
from moolre.errors import ConfigurationError, UpstreamError, UpstreamFormatError
from moolre.models import (
    Channel,
    IdKind,
    NotificationOutcome,
    TransferRequest,
    TransferStatus,
    is_success,
    normalize_status,
)


def bank_request(**overrides):
    fields = dict(
        channel=Channel.BANK,
        recipient="0012345678",
        routing_code="300302",
        amount=Decimal("150.5"),
        currency="GHS",
        external_reference="TXN-42",
        description="Salary",
    )
    fields.update(overrides)
    return TransferRequest(**fields)


@pytest.mark.parametrize("value", [-3, 0, 1, 2, 7, 42])
def test_status_normalization_ignores_representation(value):
    assert normalize_status(value) == normalize_status(str(value)) == value


def test_only_one_is_success():
    assert is_success(1) and is_success("1") and is_success(" 1 ")
    assert not is_success(0)
    assert not is_success("2")
    assert not is_success(None)
    assert not is_success("ok")


def test_transfer_payload_routing_code_only_for_bank():
    bank = transfer_payload(bank_request(), "10001")
    assert bank["sublistid"] == "300302"
    assert bank["amount"] == "150.50"
    assert bank["channel"] == "2"
    assert bank["reference"] == "Salary"
    assert bank["externalref"] == "TXN-42"
    assert bank["accountnumber"] == "10001"

    for channel in (Channel.MTN, Channel.VODAFONE, Channel.AIRTELTIGO):
        mobile = transfer_payload(bank_request(channel=channel, recipient="0244000000"), "10001")
        assert mobile["sublistid"] == ""
        assert mobile["channel"] == str(channel.value)


def test_bank_request_requires_routing_code():
    with pytest.raises(ValueError):
        bank_request(routing_code=None)
    with pytest.raises(ValueError):
        bank_request(routing_code="   ")


def test_request_rejects_bad_amounts():
    with pytest.raises(ValueError):
        bank_request(amount=Decimal("0"))
    with pytest.raises(ValueError):
        bank_request(amount=Decimal("10.123"))


def test_status_payload_id_types():
    assert status_payload("9876", IdKind.TRANSACTION_ID, "10001") == {
        "type": 1,
        "idtype": 2,
        "id": 9876,
        "accountnumber": "10001",
    }
    assert status_payload("abc", IdKind.TRANSACTION_ID, "10001")["id"] == "abc"
    external = status_payload("1234", IdKind.EXTERNAL_REFERENCE, "10001")
    assert external["idtype"] == 1
    assert external["id"] == "1234"


@pytest.mark.anyio
async def test_missing_credentials_short_circuit(gateway):
    settings = Settings(_env_file=None, api_user=None, api_key="k", account_number=None, sms_api_key=None)
    async with httpx.AsyncClient(transport=httpx.MockTransport(gateway.handler)) as http_client:
        client = MoolreClient(settings, http_client=http_client)
        with pytest.raises(ConfigurationError) as excinfo:
            await client.disburse(bank_request())
        assert excinfo.value.missing == ["MOOLRE_API_USER", "MOOLRE_ACCOUNT_NUMBER"]

        with pytest.raises(ConfigurationError):
            await client.send_sms("+233244000000", "hello")

    assert gateway.requests == []


@pytest.mark.anyio
async def test_validate_account_resolves_name(client, gateway):
    gateway.reply("/open/transact/validate", {"status": "1", "message": "Account found", "data": "KWAME ASANTE"})

    result = await client.validate_account(Channel.BANK, "0012345678", "300302", "GHS")

    assert result.valid
    assert result.account_name == "KWAME ASANTE"
    assert result.matches("  kwame asante ")
    assert not result.matches("Ama Mensah")
    sent = gateway.sent("/open/transact/validate")[0]
    assert sent["sublistid"] == "300302"
    assert gateway.requests[0].headers["X-API-USER"] == "operator"
    assert gateway.requests[0].headers["X-API-KEY"] == "secret-key"


@pytest.mark.anyio
async def test_validate_account_mobile_has_no_sublist(client, gateway):
    gateway.reply("/open/transact/validate", {"status": 1, "message": "ok", "data": "AMA MENSAH"})

    await client.validate_account(Channel.MTN, "0244000000", "300302")

    assert "sublistid" not in gateway.sent("/open/transact/validate")[0]


@pytest.mark.anyio
async def test_disburse_maps_outcome(client, gateway):
    gateway.reply(
        "/open/transact/transfer",
        {"status": 1, "message": ["Transfer initiated", "Processing"], "data": {"transactionid": 5001, "txstatus": "1"}},
    )

    result = await client.disburse(bank_request())

    assert result.transaction_id == "5001"
    assert result.external_reference == "TXN-42"
    assert result.status is TransferStatus.SUCCESSFUL
    assert result.amount == Decimal("150.5")
    assert result.message == "Transfer initiated. Processing"


@pytest.mark.anyio
async def test_disburse_html_body_raises_format_error(client, gateway):
    page = "<html><body>" + "x" * 500 + "</body></html>"
    gateway.reply("/open/transact/transfer", page, status_code=502)

    with pytest.raises(UpstreamFormatError) as excinfo:
        await client.disburse(bank_request())

    assert excinfo.value.body == page[:200]
    assert excinfo.value.status_code == 502


@pytest.mark.anyio
async def test_unsuccessful_status_raises_upstream_error(client, gateway):
    gateway.reply("/open/transact/transfer", {"status": "0", "code": "TR09", "message": "Insufficient funds"}, status_code=400)

    with pytest.raises(UpstreamError) as excinfo:
        await client.disburse(bank_request())

    assert excinfo.value.status_code == 400
    assert excinfo.value.status == 0
    assert excinfo.value.message == "Insufficient funds"


@pytest.mark.anyio
async def test_check_status_alias_fallbacks(client, gateway):
    gateway.reply(
        "/open/transact/status",
        {
            "status": 1,
            "message": "Found",
            "data": {"transactionid": 5001, "txstatus": 0, "externalref": "TXN-42", "payee": "0012345678", "value": "150.50"},
        },
    )

    first = await client.check_status("5001")
    second = await client.check_status("5001")

    assert first == second
    assert first.status is TransferStatus.PENDING
    assert first.receiver == "0012345678"
    assert first.amount == Decimal("150.50")
    assert gateway.sent("/open/transact/status")[0]["id"] == 5001


@pytest.mark.anyio
async def test_check_status_by_external_reference(client, gateway):
    gateway.reply(
        "/open/transact/status",
        {"status": 1, "data": {"txstatus": 2, "receiver": "0244000000", "payee": "ignored", "amount": 10}},
    )

    result = await client.check_status("TXN-42", IdKind.EXTERNAL_REFERENCE)

    assert result.status is TransferStatus.FAILED
    assert result.external_reference == "TXN-42"
    assert result.transaction_id is None
    assert result.receiver == "0244000000"


@pytest.mark.anyio
async def test_send_sms_strips_whitespace_and_uses_default_sender(client, gateway):
    gateway.reply("/open/sms/send", {"status": "1", "message": "Sent", "data": {"messageid": "abc"}})

    result = await client.send_sms("+233 24 400 0000", "hello", sender_id="  ")

    assert result.outcome is NotificationOutcome.SENT
    assert result.recipient == "+233244000000"
    assert result.message_id == "abc"
    sent = gateway.sent("/open/sms/send")[0]
    assert sent == {"type": 1, "senderid": "Moolre", "messages": [{"recipient": "+233244000000", "message": "hello"}]}
    assert gateway.requests[0].headers["X-API-VASKEY"] == "sms-key"


@pytest.mark.anyio
async def test_send_sms_batch_reports_each_entry(settings):
    def handler(request):
        if b"233200000000" in request.content:
            raise httpx.ConnectError("boom")
        if b"233300000000" in request.content:
            return httpx.Response(500, text="Internal Server Error")
        return httpx.Response(200, json={"status": 1, "message": "Sent"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        client = MoolreClient(settings, http_client=http_client)
        results = await client.send_sms_batch(
            [("+233244000000", "one"), ("+233200000000", "two"), ("+233300000000", "three")]
        )

    assert [result.outcome for result in results] == [
        NotificationOutcome.SENT,
        NotificationOutcome.FAILED,
        NotificationOutcome.FAILED,
    ]
    assert "boom" in results[1].error
    assert "non-JSON" in results[2].error
