"""Error taxonomy shared by the gateway client, the orchestrator and the API."""


class MoolreError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(MoolreError):
    """Required credentials are absent. Raised before any network call."""

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(f"Missing required configuration: {', '.join(missing)}")


class UpstreamFormatError(MoolreError):
    """The gateway answered with something that is not a JSON object."""

    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body[:200]
        super().__init__(f"API returned non-JSON response: {self.body}")


class UpstreamError(MoolreError):
    """The gateway answered with a structured, unsuccessful response."""

    def __init__(self, status_code: int, message: str, status: int | None = None, payload: dict | None = None):
        self.status_code = status_code
        self.status = status
        self.message = message
        self.payload = payload or {}
        super().__init__(message)


class ValidationError(MoolreError, ValueError):
    """Client-side input is malformed. Raised before any network call."""


class ConfirmationRequired(MoolreError):
    """A bank transfer's account name check failed and needs explicit confirmation."""

    def __init__(self, message: str, validation=None):
        self.validation = validation
        super().__init__(message)


class DuplicateContactError(ValidationError):
    pass


class ContactNotFoundError(MoolreError, LookupError):
    pass
