"""Exception hierarchy shared by the document pipeline."""
from __future__ import annotations


class DocragError(RuntimeError):
    """Base exception raised for pipeline issues."""


class ConfigurationError(DocragError):
    """Raised when required settings (endpoint, credentials) are missing."""


class ExtractionError(DocragError):
    """Raised when no text can be extracted from an uploaded document."""


class RemoteServiceError(DocragError):
    """Raised when the remote completion service rejects or fails a request."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        body: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.__cause__ = cause


class RateLimitError(RemoteServiceError):
    """Raised when the remote service signals rate limiting."""


class RemotePayloadError(RemoteServiceError):
    """Raised when a response body does not match the expected schema."""


class PipelineStageError(DocragError):
    """Raised when a pipeline phase fails fatally.

    ``phase`` names the failed stage so callers can report which part of the
    run needs attention.
    """

    def __init__(self, phase: str, message: str, *, cause: Exception | None = None) -> None:
        super().__init__(f"{phase} failed: {message}")
        self.phase = phase
        self.__cause__ = cause


class PipelineCancelledError(DocragError):
    """Raised when a run is cancelled between units of work."""


__all__ = [
    "ConfigurationError",
    "DocragError",
    "ExtractionError",
    "PipelineCancelledError",
    "PipelineStageError",
    "RateLimitError",
    "RemotePayloadError",
    "RemoteServiceError",
]
