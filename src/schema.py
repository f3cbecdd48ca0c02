# Models with validation
from decimal import Decimal

from pydantic import BaseModel, Field

from moolre.models import Channel, IdKind, NotificationResult, TransferOutcome, TransferRequest, ValidationResult
from moolre.notifications import Participants
from moolre.orchestrator import TransferSession, TransferState


# API request models
class ValidateAccountRequest(BaseModel):
    channel: Channel = Channel.BANK
    recipient: str = Field(min_length=1)
    routing_code: str | None = None
    currency: str | None = None
    account_name: str | None = None


class TransferSubmission(BaseModel):
    channel: Channel
    recipient: str
    routing_code: str | None = None
    amount: Decimal
    currency: str | None = None
    external_reference: str | None = None
    description: str = ""
    reference: str | None = None
    account_name: str | None = None
    recipient_phone: str | None = None
    sender_phone: str | None = None
    confirmed: bool = False

    def to_request(self, default_currency: str) -> TransferRequest:
        fields = {
            "channel": self.channel,
            "recipient": self.recipient,
            "routing_code": self.routing_code,
            "amount": self.amount,
            "currency": self.currency or default_currency,
            "description": self.description,
            "reference": self.reference,
        }
        # the operator's reference doubles as the external reference
        if self.external_reference or self.reference:
            fields["external_reference"] = self.external_reference or self.reference
        return TransferRequest(**fields)

    def participants(self) -> Participants:
        return Participants(
            account_name=self.account_name,
            recipient_phone=self.recipient_phone,
            sender_phone=self.sender_phone,
        )


class StatusRequest(BaseModel):
    id: str = Field(min_length=1)
    id_kind: IdKind = IdKind.TRANSACTION_ID


class SmsMessage(BaseModel):
    recipient: str
    message: str


class SmsRequest(BaseModel):
    recipient: str | None = None
    message: str | None = None
    sender_id: str | None = None
    messages: list[SmsMessage] | None = None


class ContactCreate(BaseModel):
    name: str
    phone: str


# API response models
class ValidateAccountResponse(ValidationResult):
    name_matches: bool | None = None


class TransferSessionResponse(BaseModel):
    session_id: str
    state: TransferState | None
    outcome: TransferOutcome | None
    name_matches: bool | None
    status_checks: int
    polling_exhausted: bool
    notifications: list[NotificationResult]
    error: str | None

    @classmethod
    def from_session(cls, session: TransferSession) -> "TransferSessionResponse":
        return cls(
            session_id=session.id,
            state=session.state,
            outcome=session.outcome,
            name_matches=session.name_matches,
            status_checks=session.status_checks,
            polling_exhausted=session.polling_exhausted,
            notifications=session.notifications,
            error=session.error,
        )


class SmsResponse(BaseModel):
    success: bool
    results: list[NotificationResult]
