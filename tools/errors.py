from typing import Optional


class CRMAssistantError(Exception):
    """Base class for every error raised by the CRM assistant services."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(CRMAssistantError):
    """A lead or thread does not exist."""

    status_code = 404


class ValidationError(CRMAssistantError):
    """A request is missing required fields or carries invalid values."""

    status_code = 400


class UpstreamError(CRMAssistantError):
    """An external API answered with a non-2xx status."""

    def __init__(self, message: str, status: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body


class AuthRequiredError(CRMAssistantError):
    """A credential for an external API is missing or expired."""


class RateLimitedError(UpstreamError):
    """The CRM asked us to back off."""

    def __init__(self, message: str, retry_after: Optional[str] = None, body: str = ""):
        super().__init__(message, status=429, body=body)
        self.retry_after = retry_after


class ThreadBusyError(UpstreamError):
    """The provider refused a message because a run is still active on the thread."""


class UnknownToolError(CRMAssistantError):
    """The assistant called a function that is not in the catalog."""

    def __init__(self, name: str, available):
        super().__init__(f"Unknown function: {name}. Available functions: {', '.join(available)}")
        self.name = name


class RunTimeoutError(CRMAssistantError):
    """A run did not finish within the polling budget."""


class RunFailedError(CRMAssistantError):
    """A run ended in a terminal state other than completed."""

    def __init__(self, status: str):
        super().__init__(f"Assistant run failed with status: {status}")
        self.status = status


class MissingReplyError(CRMAssistantError):
    """A completed run left no assistant message on the thread."""
