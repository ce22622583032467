"""
Result values exchanged between the cache, breaker, retry executor and
transport layers.

Expected upstream failures are carried in ``Result.error`` instead of being
raised, so every layer's failure modes are visible in its return type.
"""

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from src.aem.exceptions import AEMError

T = TypeVar("T")


@dataclass
class Result(Generic[T]):
    """
    Outcome of one unit of work.

    Example:
        >>> Result.ok({"title": "Home"}).success
        True
        >>> Result.fail(NotFoundError()).error.code
        <ErrorType.NOT_FOUND_ERROR: 'NOT_FOUND_ERROR'>
    """

    success: bool
    value: Optional[T] = None
    error: Optional[AEMError] = None

    @classmethod
    def ok(cls, value: T) -> "Result[T]":
        return cls(success=True, value=value)

    @classmethod
    def fail(cls, error: AEMError) -> "Result[T]":
        return cls(success=False, error=error)


@dataclass
class RetryResult(Result[T]):
    """
    Outcome of RetryExecutor.execute.

    Attributes:
        attempts: Number of attempts made (fallback not included)
        total_time: Seconds spent including backoff delays
        fallback_used: True only when a fallback produced the value
    """

    attempts: int = 0
    total_time: float = 0.0
    fallback_used: bool = False
