import time
from decimal import Decimal
from enum import Enum, IntEnum
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator


class Channel(IntEnum):
    """Destination rail, valued with the gateway's channel codes."""

    MTN = 1
    BANK = 2
    VODAFONE = 6
    AIRTELTIGO = 7

    @property
    def is_bank(self) -> bool:
        return self is Channel.BANK


class IdKind(str, Enum):
    TRANSACTION_ID = "transaction"
    EXTERNAL_REFERENCE = "external"

    @property
    def idtype(self) -> int:
        # 1 = caller externalref, 2 = gateway generated id
        return 2 if self is IdKind.TRANSACTION_ID else 1


class TransferStatus(str, Enum):
    PENDING = "Pending"
    SUCCESSFUL = "Successful"
    FAILED = "Failed"

    @classmethod
    def from_txstatus(cls, value: Any) -> "TransferStatus":
        """Map the gateway's txstatus (1 successful, 0 pending, anything else failed)."""
        if value is None:
            return cls.PENDING
        code = normalize_status(value)
        if code == 1:
            return cls.SUCCESSFUL
        if code == 0:
            return cls.PENDING
        return cls.FAILED


class NotificationOutcome(str, Enum):
    SENT = "Sent"
    FAILED = "Failed"


def normalize_status(value: Any) -> int | None:
    """
    Normalize a gateway status discriminator.

    The gateway sends its discriminators either as numbers or as strings,
    so ``1``, ``"1"`` and ``" 1 "`` all normalize to ``1``.

    :param value: The raw discriminator

    :return: The integer value, or None when it is not an integer
    """
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def is_success(value: Any) -> bool:
    return normalize_status(value) == 1


def generate_reference() -> str:
    return f"TXN-{int(time.time() * 1000)}"


class TransferRequest(BaseModel):
    channel: Channel
    recipient: str = Field(min_length=1)
    routing_code: str | None = None
    amount: Decimal = Field(gt=0, decimal_places=2)
    currency: str = "GHS"
    external_reference: str = Field(default_factory=generate_reference)
    description: str = ""
    reference: str | None = None

    @field_validator("recipient", "currency")
    @classmethod
    def strip_value(cls, value: str) -> str:
        return value.strip()

    @model_validator(mode="after")
    def check_routing_code(self):
        if self.channel.is_bank:
            if not (self.routing_code and self.routing_code.strip()):
                raise ValueError("routing_code is required for bank transfers")
            self.routing_code = self.routing_code.strip()
        else:
            self.routing_code = None
        return self

    @property
    def formatted_amount(self) -> str:
        return f"{self.amount:.2f}"


class ValidationResult(BaseModel):
    account_name: str | None = None
    valid: bool
    message: str = ""

    def matches(self, entered_name: str | None) -> bool:
        if not (self.valid and self.account_name and entered_name):
            return False
        return self.account_name.strip().lower() == entered_name.strip().lower()


class TransferOutcome(BaseModel):
    transaction_id: str | None = None
    external_reference: str | None = None
    status: TransferStatus
    amount: Decimal | None = None
    currency: str | None = None
    message: str = ""
    receiver: str | None = None
    receiver_name: str | None = None
    txstatus: int | None = None


class NotificationResult(BaseModel):
    recipient: str
    outcome: NotificationOutcome
    message_id: str | None = None
    error: str | None = None

    @property
    def sent(self) -> bool:
        return self.outcome is NotificationOutcome.SENT
