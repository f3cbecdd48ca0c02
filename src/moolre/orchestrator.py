"""
Transfer lifecycle orchestration.

A submission walks through ``Validating`` (bank transfers only) and
``Disbursing``, then the gateway's txstatus decides where it goes:

- Successful: success SMS to the recipient and the sender.
- Failed: failure SMS to the recipient.
- Pending on a bank transfer: status re-check after ``initial_poll_delay``,
  then every ``repoll_delay`` while it stays pending.
- Pending on a mobile-money transfer: mobile networks only report pending on
  insufficient balance, so the transfer is treated as failed straight away.

SMS sends run as background tasks and never change the transfer's state.
"""

import asyncio
import uuid
from enum import Enum
from functools import partial

import httpx
from loguru import logger
from pydantic import BaseModel, Field

from moolre.client import MoolreClient
from moolre.config import Settings
from moolre.errors import ConfirmationRequired, MoolreError, UpstreamError, UpstreamFormatError, ValidationError
from moolre.models import (
    IdKind,
    NotificationResult,
    TransferOutcome,
    TransferRequest,
    TransferStatus,
    ValidationResult,
)
from moolre.notifications import NotificationDispatcher, Participants
from moolre.poller import StatusPoller


class TransferState(str, Enum):
    VALIDATING = "Validating"
    DISBURSING = "Disbursing"
    SUCCESSFUL = "Successful"
    FAILED = "Failed"
    PENDING_BANK = "PendingBank"
    PENDING_MOBILE = "PendingMobile"

    @property
    def terminal(self) -> bool:
        return self in (TransferState.SUCCESSFUL, TransferState.FAILED)


class TransferSession(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    request: TransferRequest
    participants: Participants = Field(default_factory=Participants)
    state: TransferState | None = None
    history: list[TransferState] = Field(default_factory=list)
    validation: ValidationResult | None = None
    name_matches: bool | None = None
    outcome: TransferOutcome | None = None
    status_checks: int = 0
    polling_exhausted: bool = False
    notifications: list[NotificationResult] = Field(default_factory=list)
    error: str | None = None

    def transition(self, state: TransferState):
        logger.info(f"Transfer {self.id}: {self.state.value if self.state else 'new'} -> {state.value}")
        self.state = state
        self.history.append(state)


class TransferOrchestrator:
    """Owns the current transfer session and drives it to a terminal state."""

    def __init__(
        self,
        client: MoolreClient,
        dispatcher: NotificationDispatcher | None = None,
        poller: StatusPoller | None = None,
        settings: Settings | None = None,
    ):
        self.client = client
        self.settings = settings or client.settings
        self.dispatcher = dispatcher or NotificationDispatcher(client, self.settings.sms_sender_id)
        self.poller = poller or StatusPoller(client)
        self.session: TransferSession | None = None
        self._notification_tasks: set[asyncio.Task] = set()

    async def check_account_name(self, request: TransferRequest) -> ValidationResult:
        """Validate the destination account. Gateway failures become an invalid result."""
        try:
            return await self.client.validate_account(
                request.channel, request.recipient, request.routing_code, request.currency
            )
        except (UpstreamError, UpstreamFormatError, httpx.HTTPError) as exc:
            logger.warning(f"Account validation failed for {request.recipient}: {exc}")
            return ValidationResult(valid=False, message=str(exc) or "Validation failed")

    async def submit(
        self,
        request: TransferRequest,
        participants: Participants | None = None,
        confirmed: bool = False,
    ) -> TransferSession:
        """
        Start a new transfer, replacing any previous session.

        :param request: The transfer to disburse
        :param participants: Entered account name and the phones to notify
        :param confirmed: Proceed with a bank transfer even if the account name check failed

        :return: The session, in the state the gateway's first answer led to
        """
        participants = participants or Participants()
        if request.channel.is_bank and not (participants.account_name and participants.account_name.strip()):
            raise ValidationError("Account name is required when sending to bank accounts")

        self._replace_session()
        session = TransferSession(request=request, participants=participants)
        self.session = session

        if request.channel.is_bank:
            session.transition(TransferState.VALIDATING)
            session.validation = await self.check_account_name(request)
            session.name_matches = session.validation.matches(participants.account_name)
            if not session.name_matches and not confirmed:
                if session.validation.valid:
                    message = (
                        "Account name does not match the validated name "
                        f"({session.validation.account_name}). Confirm to proceed anyway."
                    )
                else:
                    message = f"Account name validation failed ({session.validation.message}). Confirm to proceed anyway."
                logger.warning(f"Transfer {session.id} needs confirmation: {message}")
                raise ConfirmationRequired(message, session.validation)

        session.transition(TransferState.DISBURSING)
        try:
            outcome = await self.client.disburse(request)
        except (MoolreError, httpx.HTTPError) as exc:
            session.error = str(exc)
            logger.error(f"Transfer {session.id} could not be disbursed: {exc}")
            raise

        session.outcome = outcome
        await self._apply(session, outcome, initial=True)
        return session

    async def refresh_status(self) -> TransferSession:
        """
        Check the current transfer's status now.

        A successful check replaces any scheduled one. If the check itself fails,
        the error is recorded and the scheduled check stays in place.
        A transfer that already settled keeps its state and is not notified again.
        """
        session = self.session
        if session is None or session.outcome is None:
            raise ValidationError("No transaction id or reference available to check status")

        outcome = session.outcome
        try:
            if outcome.transaction_id:
                fresh = await self.client.check_status(outcome.transaction_id, IdKind.TRANSACTION_ID)
            else:
                fresh = await self.client.check_status(outcome.external_reference, IdKind.EXTERNAL_REFERENCE)
        except (MoolreError, httpx.HTTPError) as exc:
            session.error = str(exc)
            logger.warning(f"Manual status check for transfer {session.id} failed: {exc}")
            raise
        self.poller.cancel(session.id)
        await self._apply(session, fresh)
        return session

    async def wait_for_notifications(self):
        while self._notification_tasks:
            await asyncio.gather(*list(self._notification_tasks))

    def _replace_session(self):
        if self.session is not None:
            self.poller.cancel(self.session.id)
        self.session = None

    async def _apply(self, session: TransferSession, outcome: TransferOutcome, initial: bool = False):
        if session is not self.session:
            logger.warning(f"Ignoring status update for replaced transfer {session.id}")
            return

        if not initial:
            session.status_checks += 1
            session.error = None
            settled = session.state is not None and session.state.terminal
            self._merge(session.outcome, outcome, keep_status=settled)
            if settled:
                # details may still fill in, but a settled transfer never moves or notifies again
                logger.info(f"Transfer {session.id} already {session.state.value}, ignoring reported {outcome.status.value}")
                return

        status = session.outcome.status
        if status is TransferStatus.SUCCESSFUL:
            session.transition(TransferState.SUCCESSFUL)
            self._notify(session, success=True)
        elif status is TransferStatus.FAILED:
            session.transition(TransferState.FAILED)
            self._notify(session, success=False)
        elif session.request.channel.is_bank:
            session.transition(TransferState.PENDING_BANK)
            delay = self.settings.initial_poll_delay if initial else self.settings.repoll_delay
            self._schedule_check(session, delay)
        else:
            session.transition(TransferState.PENDING_MOBILE)
            session.transition(TransferState.FAILED)
            self._notify(session, success=False)

    @staticmethod
    def _merge(current: TransferOutcome, fresh: TransferOutcome, keep_status: bool = False):
        if not keep_status:
            current.status = fresh.status
            current.txstatus = fresh.txstatus
        current.message = fresh.message or current.message
        current.transaction_id = current.transaction_id or fresh.transaction_id
        current.external_reference = current.external_reference or fresh.external_reference
        current.receiver = fresh.receiver or current.receiver
        current.receiver_name = fresh.receiver_name or current.receiver_name

    def _schedule_check(self, session: TransferSession, delay: float):
        limit = self.settings.max_status_checks
        if limit and session.status_checks >= limit:
            session.polling_exhausted = True
            logger.warning(f"Transfer {session.id} still pending after {session.status_checks} checks, giving up")
            return
        self.poller.schedule(
            session.id,
            delay,
            on_result=partial(self._apply, session),
            on_error=partial(self._poll_failed, session),
            transaction_id=session.outcome.transaction_id,
            external_reference=session.outcome.external_reference,
        )

    async def _poll_failed(self, session: TransferSession, exc: Exception):
        if session is self.session:
            session.error = str(exc)

    def _notify(self, session: TransferSession, success: bool):
        if success:
            coro = self.dispatcher.notify_success(session.outcome, session.participants, session.request.reference)
        else:
            coro = self.dispatcher.notify_failure(session.outcome, session.participants, session.request.reference)
        task = asyncio.get_running_loop().create_task(self._record_notifications(session, coro))
        self._notification_tasks.add(task)
        task.add_done_callback(self._notification_tasks.discard)

    @staticmethod
    async def _record_notifications(session: TransferSession, coro):
        results = await coro
        session.notifications.extend(results)
        sent = sum(1 for result in results if result.sent)
        logger.info(f"Transfer {session.id}: {sent}/{len(results)} notifications sent")
