import asyncio
import json

import httpx
import pytest

from moolre.client import MoolreClient
from moolre.config import Settings
from moolre.models import NotificationOutcome, NotificationResult, TransferOutcome, TransferStatus, ValidationResult


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        api_base_url="https://gateway.test",
        api_user="operator",
        api_key="secret-key",
        account_number="10001",
        sms_api_key="sms-key",
        sms_sender_id="Moolre",
        max_status_checks=20,
    )


class Gateway:
    """Routes gateway requests to canned responses and records what was sent."""

    def __init__(self):
        self.responses: dict[str, list] = {}
        self.requests: list[httpx.Request] = []

    def reply(self, path: str, body, status_code: int = 200):
        self.responses.setdefault(path, []).append((body, status_code))

    def sent(self, path: str) -> list[dict]:
        return [json.loads(request.content) for request in self.requests if request.url.path == path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.responses[request.url.path]
        body, status_code = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(body, Exception):
            raise body
        if isinstance(body, str):
            return httpx.Response(status_code, text=body)
        return httpx.Response(status_code, json=body)


@pytest.fixture
def gateway():
    return Gateway()


@pytest.fixture
async def client(settings, gateway):
    async with httpx.AsyncClient(transport=httpx.MockTransport(gateway.handler)) as http_client:
        yield MoolreClient(settings, http_client=http_client)


class FakeClient:
    """Stands in for MoolreClient with scripted outcomes."""

    def __init__(self, settings):
        self.settings = settings
        self.validation = ValidationResult(account_name="KWAME ASANTE", valid=True, message="ok")
        self.disburse_result = None
        self.status_results: list = []
        self.status_calls: list[tuple] = []
        self.sms_calls: list[tuple] = []
        self.failing_phones: set[str] = set()

    async def validate_account(self, channel, recipient, routing_code=None, currency=None):
        if isinstance(self.validation, Exception):
            raise self.validation
        return self.validation

    async def disburse(self, request):
        if isinstance(self.disburse_result, Exception):
            raise self.disburse_result
        return self.disburse_result.model_copy(update={"amount": request.amount, "currency": request.currency})

    async def check_status(self, identifier, id_kind):
        self.status_calls.append((identifier, id_kind))
        result = self.status_results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    async def send_sms(self, recipient, body, sender_id=None):
        self.sms_calls.append((recipient, body))
        if recipient in self.failing_phones:
            raise httpx.ConnectError("connection refused")
        return NotificationResult(recipient=recipient, outcome=NotificationOutcome.SENT, message_id=f"msg-{len(self.sms_calls)}")


def outcome(status: TransferStatus, transaction_id="5001", external_reference="TXN-1", **extra) -> TransferOutcome:
    return TransferOutcome(
        transaction_id=transaction_id,
        external_reference=external_reference,
        status=status,
        message="Transaction queued",
        **extra,
    )


@pytest.fixture
def fake_client(settings):
    return FakeClient(settings)


class Sleeper:
    """Replacement for asyncio.sleep that records delays and waits to be released."""

    def __init__(self):
        self.delays: list[float] = []
        self.gates: list = []

    async def __call__(self, delay: float):
        self.delays.append(delay)
        gate = asyncio.Event()
        self.gates.append(gate)
        await gate.wait()

    def release(self):
        self.gates[-1].set()


async def settle(rounds: int = 20):
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def sleeper():
    return Sleeper()
