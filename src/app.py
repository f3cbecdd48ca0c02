import asyncio
import os
import time
import uuid

import pydantic
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from loguru import logger
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from moolre.client import MoolreClient
from moolre.config import setting
from moolre.contacts import Contact, ContactRepository, InMemoryContactRepository
from moolre.errors import (
    ConfigurationError,
    ConfirmationRequired,
    ContactNotFoundError,
    UpstreamError,
    UpstreamFormatError,
    ValidationError,
)
from moolre.models import TransferOutcome
from moolre.orchestrator import TransferOrchestrator
from schema import (
    ContactCreate,
    SmsRequest,
    SmsResponse,
    StatusRequest,
    TransferSessionResponse,
    TransferSubmission,
    ValidateAccountRequest,
    ValidateAccountResponse,
)

# Transfer submissions and refreshes share the one current session
request_semaphore = asyncio.Semaphore(1)

async def get_semaphore():
    async with request_semaphore:
        yield

# Per-client limit on gateway-backed endpoints, MOOLRE_RATE_LIMIT
limiter = Limiter(key_func=get_remote_address)

app = FastAPI(
    title="Moolre Disbursement API",
    description="Disburse funds to bank and mobile money accounts and notify participants by SMS",
    version="1.0.0"
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Gateway client, transfer orchestrator and contact store; tests swap these on app.state
app.state.client = MoolreClient(setting)
app.state.orchestrator = TransferOrchestrator(app.state.client)
app.state.contacts = InMemoryContactRepository()


def get_client() -> MoolreClient:
    return app.state.client


def get_orchestrator() -> TransferOrchestrator:
    return app.state.orchestrator


def get_contacts() -> ContactRepository:
    return app.state.contacts


# Error mapping
@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    return JSONResponse(status_code=500, content={"success": False, "error": str(exc), "missing": exc.missing})


@app.exception_handler(UpstreamFormatError)
async def upstream_format_error_handler(request: Request, exc: UpstreamFormatError):
    return JSONResponse(
        status_code=502,
        content={"success": False, "error": str(exc), "status": exc.status_code},
    )


@app.exception_handler(UpstreamError)
async def upstream_error_handler(request: Request, exc: UpstreamError):
    return JSONResponse(
        status_code=502,
        content={"success": False, "error": exc.message, "status": exc.status, "http_status": exc.status_code},
    )


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"success": False, "error": str(exc)})


@app.exception_handler(pydantic.ValidationError)
async def model_validation_error_handler(request: Request, exc: pydantic.ValidationError):
    return JSONResponse(
        status_code=422,
        content={"success": False, "error": "Invalid request", "detail": exc.errors(include_url=False, include_context=False, include_input=False)},
    )


# Every call gets an id that ties its log lines to the X-Request-ID header
@app.middleware("http")
async def log_request(request: Request, call_next):
    start_time = time.time()
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id

    client_host = request.client.host if request.client else "unknown"
    logger.info(f"Request {request_id}: {request.method} {request.url.path} from {client_host}")

    try:
        response = await call_next(request)

        process_time = time.time() - start_time
        status_code = response.status_code
        logger.info(
            f"Response {request_id}: Status {status_code}, "
            f"Completed in {process_time:.3f}s"
        )

        response.headers["X-Request-ID"] = request_id

        return response
    except Exception as e:
        # gateway and validation errors are mapped above, so this is a bug
        process_time = time.time() - start_time
        logger.error(
            f"Error {request_id}: {str(e)}, "
            f"Occurred after {process_time:.3f}s"
        )
        raise


# API endpoints
@app.post("/api/v1/validate", response_model=ValidateAccountResponse)
@limiter.limit(setting.rate_limit)
async def validate_account(
    body: ValidateAccountRequest,
    request: Request,
    client: MoolreClient = Depends(get_client),
):
    """Resolve the holder name of an account and compare it with the entered one"""
    result = await client.validate_account(body.channel, body.recipient, body.routing_code, body.currency)
    name_matches = result.matches(body.account_name) if body.account_name else None
    return ValidateAccountResponse(**result.model_dump(), name_matches=name_matches)


@app.post("/api/v1/transfers", response_model=TransferSessionResponse)
@limiter.limit(setting.rate_limit)
async def submit_transfer(
    submission: TransferSubmission,
    request: Request,
    orchestrator: TransferOrchestrator = Depends(get_orchestrator),
    dependencies=Depends(get_semaphore),
):
    """Disburse funds and start tracking the transfer"""
    request_id = getattr(request.state, "request_id", str(uuid.uuid4()))
    transfer = submission.to_request(orchestrator.settings.default_currency)
    logger.info(f"Processing transfer: {request_id}, External reference: {transfer.external_reference}")

    try:
        session = await orchestrator.submit(transfer, submission.participants(), confirmed=submission.confirmed)
    except ConfirmationRequired as exc:
        validation = exc.validation.model_dump(mode="json") if exc.validation else None
        return JSONResponse(
            status_code=409,
            content={"success": False, "confirmation_required": True, "error": str(exc), "validation": validation},
        )
    return TransferSessionResponse.from_session(session)


@app.get("/api/v1/transfers/current", response_model=TransferSessionResponse)
async def current_transfer(orchestrator: TransferOrchestrator = Depends(get_orchestrator)):
    if orchestrator.session is None:
        raise HTTPException(status_code=404, detail="No transfer has been submitted")
    return TransferSessionResponse.from_session(orchestrator.session)


@app.post("/api/v1/transfers/current/refresh", response_model=TransferSessionResponse)
@limiter.limit(setting.rate_limit)
async def refresh_transfer(
    request: Request,
    orchestrator: TransferOrchestrator = Depends(get_orchestrator),
    dependencies=Depends(get_semaphore),
):
    """Check the current transfer's status immediately"""
    session = await orchestrator.refresh_status()
    return TransferSessionResponse.from_session(session)


@app.post("/api/v1/status", response_model=TransferOutcome)
@limiter.limit(setting.rate_limit)
async def transfer_status(
    body: StatusRequest,
    request: Request,
    client: MoolreClient = Depends(get_client),
):
    """Look up any transfer by transaction id or external reference"""
    return await client.check_status(body.id, body.id_kind)


@app.post("/api/v1/sms", response_model=SmsResponse)
@limiter.limit(setting.rate_limit)
async def send_sms(
    body: SmsRequest,
    request: Request,
    client: MoolreClient = Depends(get_client),
):
    """Send one SMS, or one per entry of a batch"""
    if body.messages:
        results = await client.send_sms_batch(
            [(message.recipient, message.message) for message in body.messages], body.sender_id
        )
    elif body.recipient and body.message:
        results = [await client.send_sms(body.recipient, body.message, body.sender_id)]
    else:
        raise ValidationError("Either (recipient and message) or messages array is required")
    return SmsResponse(success=all(result.sent for result in results), results=results)


@app.get("/api/v1/contacts", response_model=list[Contact])
async def list_contacts(contacts: ContactRepository = Depends(get_contacts)):
    return contacts.list()


@app.post("/api/v1/contacts", response_model=Contact)
async def create_contact(body: ContactCreate, contacts: ContactRepository = Depends(get_contacts)):
    return contacts.create(body.name, body.phone)


@app.delete("/api/v1/contacts/{contact_id}")
async def delete_contact(contact_id: str, contacts: ContactRepository = Depends(get_contacts)):
    try:
        contacts.delete(contact_id)
    except ContactNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return {"success": True}

if __name__ == "__main__":
    # Launch the FastAPI app
    import uvicorn
    port = int(os.environ.get("PORT", 8000))
    uvicorn.run("app:app", host="0.0.0.0", port=port, reload=False)
