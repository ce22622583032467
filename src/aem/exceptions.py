"""
Exception hierarchy for the AEM request core.

Each class maps onto one code of the closed ErrorType taxonomy. Inside the
pipeline these exceptions travel as values (see src.resilience.result);
they are only raised across a few internal seams and are always converted
to a StructuredError before reaching a caller.
"""

import asyncio
from typing import Any, Optional

import httpx

from src.models.responses import ErrorType, StructuredError
from src.utils.redaction import redact


class AEMError(Exception):
    """
    Base exception for all AEM request core errors.

    Attributes:
        message: Error description
        code: Taxonomy code
        recoverable: Whether a higher layer may retry later
        retry_after_ms: Suggested wait before retrying, in milliseconds
        details: Diagnostic context (redacted on conversion)
        retryable: Explicit retry classification, overriding the policy default
    """

    code: ErrorType = ErrorType.UNKNOWN_ERROR
    default_recoverable: bool = False

    def __init__(
        self,
        message: str,
        *,
        recoverable: Optional[bool] = None,
        retry_after_ms: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
        retryable: Optional[bool] = None,
    ) -> None:
        self.message = message
        self.recoverable = (
            self.default_recoverable if recoverable is None else recoverable
        )
        self.retry_after_ms = retry_after_ms
        self.details = dict(details) if details else {}
        self.retryable = retryable
        super().__init__(self.message)

    def with_details(self, **extra: Any) -> "AEMError":
        """Merge extra diagnostic context into this error and return it."""
        self.details.update(extra)
        return self

    def to_structured(self) -> StructuredError:
        """Convert to the StructuredError shape used in envelopes."""
        return StructuredError(
            code=self.code,
            message=self.message or self.code.value,
            recoverable=self.recoverable,
            retry_after_ms=self.retry_after_ms,
            details=redact(self.details) if self.details else None,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code.value}, message={self.message!r})"


class AuthenticationError(AEMError):
    """
    Raised when AEM authentication fails.

    This occurs when:
    - Credentials are missing or invalid
    - A token refresh against IMS fails
    - AEM answers 401

    Never retried by the retry executor.
    """

    code = ErrorType.AUTHENTICATION_ERROR

    def __init__(self, message: str = "Authentication failed", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class AuthorizationError(AEMError):
    """Raised when AEM denies access to a resource (403, AccessDeniedException)."""

    code = ErrorType.AUTHORIZATION_ERROR

    def __init__(self, message: str = "Access denied", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class ValidationError(AEMError):
    """
    Raised when request parameters are rejected.

    This is a client-side error and should not be retried.

    Example:
        >>> raise ValidationError("Invalid request parameters", field="path")
    """

    code = ErrorType.VALIDATION_ERROR

    def __init__(
        self,
        message: str = "Invalid request parameters",
        field: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        self.field = field
        if field:
            message = f"{field}: {message}"
        super().__init__(message, **kwargs)


class NotFoundError(AEMError):
    """
    Raised when the requested AEM resource does not exist.

    Example:
        >>> raise NotFoundError("Resource not found", resource="/content/missing")
    """

    code = ErrorType.NOT_FOUND_ERROR

    def __init__(
        self,
        message: str = "Resource not found",
        resource: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        self.resource = resource
        super().__init__(message, **kwargs)


class NetworkError(AEMError):
    """
    Raised when AEM cannot be reached (connection refused, DNS failure, reset).

    Typically transient; retried with exponential backoff.
    """

    code = ErrorType.NETWORK_ERROR
    default_recoverable = True

    def __init__(self, message: str = "Network connection failed", **kwargs: Any) -> None:
        kwargs.setdefault("retry_after_ms", 10000)
        super().__init__(message, **kwargs)


class RequestTimeoutError(AEMError):
    """
    Raised when a request attempt does not settle within its timeout.

    Example:
        >>> raise RequestTimeoutError(timeout_seconds=30)
    """

    code = ErrorType.TIMEOUT_ERROR
    default_recoverable = True

    def __init__(
        self,
        message: str = "Request timeout",
        timeout_seconds: Optional[float] = None,
        **kwargs: Any,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        if timeout_seconds is not None:
            message = f"{message} ({timeout_seconds}s)"
        kwargs.setdefault("retry_after_ms", 5000)
        super().__init__(message, **kwargs)


class ServerError(AEMError):
    """
    Raised when AEM answers with a server-side failure (5xx, 429,
    RepositoryException payloads).

    These errors are typically transient and retried.
    """

    code = ErrorType.SERVER_ERROR
    default_recoverable = True

    def __init__(
        self,
        message: str = "Server error",
        status_code: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        self.status_code = status_code
        super().__init__(message, **kwargs)


class CircuitOpenError(ServerError):
    """
    Raised (as a value) when a circuit breaker rejects a call without
    invoking it.

    Keeps the SERVER_ERROR code; ``details.circuit_open`` distinguishes it.
    """

    def __init__(self, breaker: str, retry_after_ms: int) -> None:
        self.breaker = breaker
        super().__init__(
            f"Circuit breaker {breaker} is OPEN",
            retry_after_ms=retry_after_ms,
            details={"circuit_open": True, "breaker": breaker},
            retryable=False,
        )


class UnknownError(AEMError):
    """Raised for anything that cannot be classified."""

    code = ErrorType.UNKNOWN_ERROR

    def __init__(self, message: str = "An unknown error occurred", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class CacheUnavailableError(AEMError):
    """Raised by a strict cache backend when a write cannot be stored."""

    code = ErrorType.NETWORK_ERROR
    default_recoverable = True

    def __init__(self, message: str = "Cache backend unavailable", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


ERROR_CLASSES: dict[ErrorType, type[AEMError]] = {
    ErrorType.AUTHENTICATION_ERROR: AuthenticationError,
    ErrorType.AUTHORIZATION_ERROR: AuthorizationError,
    ErrorType.VALIDATION_ERROR: ValidationError,
    ErrorType.NOT_FOUND_ERROR: NotFoundError,
    ErrorType.NETWORK_ERROR: NetworkError,
    ErrorType.TIMEOUT_ERROR: RequestTimeoutError,
    ErrorType.SERVER_ERROR: ServerError,
    ErrorType.UNKNOWN_ERROR: UnknownError,
}


def error_for_code(code: ErrorType, message: str, **kwargs: Any) -> AEMError:
    """
    Build the exception class registered for a taxonomy code.

    Example:
        >>> err = error_for_code(ErrorType.NOT_FOUND_ERROR, "No such page")
        >>> isinstance(err, NotFoundError)
        True
    """
    return ERROR_CLASSES[ErrorType(code)](message, **kwargs)


def classify_exception(exc: BaseException) -> AEMError:
    """
    Map an arbitrary exception into the AEM error taxonomy.

    Args:
        exc: Exception raised by a transport, a callback or user code

    Returns:
        The exception itself if it already is an AEMError, else a new
        classified AEMError chained to it
    """
    if isinstance(exc, AEMError):
        return exc

    if isinstance(exc, httpx.TimeoutException):
        error: AEMError = RequestTimeoutError(
            details={"original_error": str(exc), "error_type": type(exc).__name__}
        )
    elif isinstance(exc, asyncio.TimeoutError):
        error = RequestTimeoutError(details={"error_type": type(exc).__name__})
    elif isinstance(exc, httpx.TransportError):
        error = NetworkError(
            details={"original_error": str(exc), "error_type": type(exc).__name__}
        )
    elif isinstance(exc, (ConnectionError, OSError)):
        error = NetworkError(
            details={"original_error": str(exc), "error_type": type(exc).__name__}
        )
    else:
        error = UnknownError(
            str(exc) or "An unknown error occurred",
            details={"error_type": type(exc).__name__},
        )

    error.__cause__ = exc
    return error
