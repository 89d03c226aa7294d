"""Error taxonomy for upstream price-data calls.

Every error that leaves the resilience layer is an ``UpstreamError`` tagged
with an ``ErrorKind``. The kind is set where the error originates, so retry
and fallback decisions never depend on message text.
"""

import asyncio
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Discriminant carried by every upstream error."""

    FATAL = "FATAL"  # Not found, bad request - never retried
    RETRYABLE = "RETRYABLE"  # Timeout, 5xx, rate limited
    CIRCUIT_OPEN = "CIRCUIT_OPEN"  # Rejected without calling upstream
    EXHAUSTED = "EXHAUSTED"  # Retry budget used up
    TIMEOUT = "TIMEOUT"  # Caller deadline elapsed


# Untagged exceptions of these types are treated as fatal
NON_RETRYABLE_EXCEPTIONS = (
    ValueError,
    TypeError,
    LookupError,
    AttributeError,
)


class UpstreamError(Exception):
    """Base class for all errors surfaced by the resilience layer."""

    kind: ErrorKind = ErrorKind.RETRYABLE

    @property
    def is_retryable(self) -> bool:
        return self.kind == ErrorKind.RETRYABLE


class FatalUpstreamError(UpstreamError):
    """Upstream rejected the request itself. Retrying cannot help."""

    kind = ErrorKind.FATAL


class NotFoundError(FatalUpstreamError):
    """Requested symbol or resource does not exist upstream."""

    pass


class InvalidRequestError(FatalUpstreamError):
    """Request failed upstream validation."""

    pass


class RetryableUpstreamError(UpstreamError):
    """Transient upstream failure that may succeed on retry."""

    kind = ErrorKind.RETRYABLE


class UpstreamUnavailableError(RetryableUpstreamError):
    """Network error, timeout or 5xx from the upstream."""

    pass


class RateLimitError(RetryableUpstreamError):
    """Upstream reported that the request budget is exhausted."""

    def __init__(self, message: str = "", retry_after: float = 0.0):
        super().__init__(message)
        self.retry_after = retry_after


class CircuitOpenError(UpstreamError):
    """Raised when the endpoint's circuit breaker is open."""

    kind = ErrorKind.CIRCUIT_OPEN

    def __init__(self, endpoint_id: str, retry_after_seconds: int):
        self.endpoint_id = endpoint_id
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            f"Service temporarily unavailable. Circuit breaker open for "
            f"{endpoint_id}. Retry in {retry_after_seconds} seconds."
        )


class RetriesExhaustedError(UpstreamError):
    """Raised when every retry attempt failed with a retryable error."""

    kind = ErrorKind.EXHAUSTED

    def __init__(self, attempts: int, last_error: Optional[BaseException] = None):
        self.attempts = attempts
        self.last_error = last_error
        detail = f" {last_error}" if last_error is not None else ""
        super().__init__(f"Request failed after {attempts} attempts.{detail}")


class RequestTimeoutError(UpstreamError):
    """Raised when a caller's deadline elapses before a result is ready."""

    kind = ErrorKind.TIMEOUT

    def __init__(self, message: str = "", timeout: float = 0.0):
        super().__init__(message)
        self.timeout = timeout


def classify(exc: BaseException) -> ErrorKind:
    """Return the error kind for an exception.

    Tagged errors report their own kind. Untagged exceptions are fatal if
    they are programming or lookup errors and retryable otherwise, which
    covers connection resets, ``OSError`` and timeouts.

    Args:
        exc: The exception raised by an upstream call

    Returns:
        The exception's ErrorKind
    """
    if isinstance(exc, UpstreamError):
        return exc.kind
    if isinstance(exc, asyncio.TimeoutError):
        return ErrorKind.RETRYABLE
    if isinstance(exc, NON_RETRYABLE_EXCEPTIONS):
        return ErrorKind.FATAL
    return ErrorKind.RETRYABLE
