from typing import Optional


class AuditorError(Exception):
    """Base class for errors raised by the auditor."""


class FetchFailed(AuditorError):
    """Non-2xx response or transport failure while fetching a page."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class FetchTimeout(AuditorError):
    pass


class AuditCancelled(AuditorError):
    """The run was cancelled by the caller. Not a failure."""


class AuditAlreadyRunning(AuditorError):
    pass
