"""
Error taxonomy for the grading pipeline.

Every failure the pipeline can observe is tagged with an ErrorKind at the
point it is first detected (HTTP status, timeout signal, credential check),
so retry decisions never depend on parsing error message text.
"""

import asyncio
from enum import Enum


class ErrorKind(str, Enum):
    """Closed set of failure tags."""

    MISSING_CREDENTIAL = "missing_credential"
    INVALID_CREDENTIAL = "invalid_credential"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    TIMEOUT = "timeout"
    PARSE_FAILURE = "parse_failure"
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        """Whether an error of this kind is worth another attempt."""
        return self in _RETRYABLE_KINDS

    @classmethod
    def from_status_code(cls, status_code: int) -> "ErrorKind":
        """Map an HTTP status code to an error kind."""
        if status_code == 429:
            return cls.RATE_LIMITED
        if status_code in (401, 403):
            return cls.INVALID_CREDENTIAL
        if status_code == 408:
            return cls.TIMEOUT
        if status_code >= 500:
            return cls.SERVER_ERROR
        return cls.UNKNOWN


_RETRYABLE_KINDS = frozenset(
    {ErrorKind.RATE_LIMITED, ErrorKind.SERVER_ERROR, ErrorKind.TIMEOUT}
)


class PipelineError(Exception):
    """
    Raised when a pipeline stage fails.

    Carries the error kind, the HTTP status when one was observed, and
    the underlying exception.
    """

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.UNKNOWN,
        status_code: int | None = None,
        cause: Exception | None = None,
    ):
        self.kind = kind
        self.status_code = status_code
        self.cause = cause
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.kind.retryable

    @classmethod
    def from_exception(cls, exc: BaseException) -> "PipelineError":
        """
        Classify an arbitrary exception.

        Tagged pipeline errors keep their kind. Timeouts and exceptions
        exposing an integer ``status_code`` are tagged accordingly;
        anything else is UNKNOWN and therefore fatal.
        """
        if isinstance(exc, PipelineError):
            return exc

        cause = exc if isinstance(exc, Exception) else None

        if isinstance(exc, (TimeoutError, asyncio.TimeoutError)):
            return cls(str(exc) or "Operation timed out", ErrorKind.TIMEOUT, cause=cause)

        status_code = getattr(exc, "status_code", None)
        if isinstance(status_code, int):
            return cls(
                str(exc),
                ErrorKind.from_status_code(status_code),
                status_code=status_code,
                cause=cause,
            )

        return cls(str(exc) or type(exc).__name__, ErrorKind.UNKNOWN, cause=cause)


class ParseFailure(PipelineError):
    """Raised when no structured result can be recovered from model output."""

    def __init__(self, message: str, raw_response: str | None = None):
        self.raw_response = raw_response
        super().__init__(message, ErrorKind.PARSE_FAILURE)
