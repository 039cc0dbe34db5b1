"""Errors raised by external collaborator adapters."""


class CollaboratorError(Exception):
    """Base exception for extractor, scorer, enrichment and CRM adapters."""

    def __init__(
        self,
        message: str,
        service: str = "unknown",
        status_code: int | None = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.service = service
        self.status_code = status_code
        self.recoverable = recoverable


class RetryableError(CollaboratorError):
    """Transient failure: rate limited, unreachable, timed out or 5xx."""

    def __init__(self, message: str, service: str = "unknown", status_code: int | None = None):
        super().__init__(message, service=service, status_code=status_code, recoverable=True)


class PermanentError(CollaboratorError):
    """Failure that will not go away by trying again (bad payload, 4xx)."""

    def __init__(self, message: str, service: str = "unknown", status_code: int | None = None):
        super().__init__(message, service=service, status_code=status_code, recoverable=False)
