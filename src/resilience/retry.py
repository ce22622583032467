"""
Retry policy executor with exponential backoff and fallback.

Implements bounded retries with a jitter-free backoff:

    delay(n) = min(base_delay * backoff_multiplier ** (n - 1), max_delay)

where ``n`` is the number of the attempt that just failed. Presets for
HTTP, upstream, cache and bulk work are the same executor with different
defaults.
"""

import asyncio
import inspect
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union

import structlog
from pydantic import BaseModel, Field

from src.aem.exceptions import AEMError, RequestTimeoutError, classify_exception
from src.models.responses import ErrorType
from src.resilience.result import Result, RetryResult

logger = structlog.get_logger(__name__)

DEFAULT_RETRYABLE_ERRORS = frozenset(
    {ErrorType.NETWORK_ERROR, ErrorType.TIMEOUT_ERROR, ErrorType.SERVER_ERROR}
)

Operation = Callable[[], Awaitable[Any]]


class RetryPolicy(BaseModel):
    """
    Retry thresholds. Durations are in seconds.

    Example:
        >>> policy = RetryPolicy(max_attempts=3, base_delay=1.0)
        >>> policy.delay_for(2)
        2.0
    """

    max_attempts: int = Field(3, ge=1, description="Total attempts including the first")
    base_delay: float = Field(1.0, ge=0, description="Delay after the first failure")
    max_delay: float = Field(30.0, ge=0, description="Upper bound for any delay")
    backoff_multiplier: float = Field(2.0, ge=1, description="Growth factor per attempt")
    retryable_errors: frozenset[ErrorType] = Field(
        DEFAULT_RETRYABLE_ERRORS,
        description="Error codes retried when the error carries no explicit flag",
    )
    timeout: Optional[float] = Field(
        None,
        gt=0,
        description="Per-attempt timeout in seconds (None disables it)",
    )

    def delay_for(self, attempt: int) -> float:
        """Backoff delay after ``attempt`` (1-based) failed."""
        delay = self.base_delay * (self.backoff_multiplier ** (attempt - 1))
        return min(delay, self.max_delay)

    def is_retryable(self, error: AEMError) -> bool:
        if error.retryable is not None:
            return error.retryable
        return error.code in self.retryable_errors

    @classmethod
    def for_http(cls, **overrides: Any) -> "RetryPolicy":
        return cls(**{"max_attempts": 5, "base_delay": 0.5, "max_delay": 10.0, **overrides})

    @classmethod
    def for_upstream(cls, **overrides: Any) -> "RetryPolicy":
        return cls(**{"max_attempts": 3, "base_delay": 1.0, "max_delay": 15.0, **overrides})

    @classmethod
    def for_cache(cls, **overrides: Any) -> "RetryPolicy":
        return cls(
            **{
                "max_attempts": 2,
                "base_delay": 0.1,
                "max_delay": 1.0,
                "retryable_errors": frozenset(
                    {ErrorType.NETWORK_ERROR, ErrorType.TIMEOUT_ERROR}
                ),
                **overrides,
            }
        )

    @classmethod
    def for_bulk(cls, **overrides: Any) -> "RetryPolicy":
        return cls(**{"max_attempts": 2, "base_delay": 2.0, "max_delay": 30.0, **overrides})


@dataclass
class RetryAttempt:
    """Per-attempt record handed to ``on_retry`` callbacks."""

    attempt_number: int
    last_error: AEMError
    elapsed: float
    next_delay: float


class RetryExecutor:
    """
    Runs an operation with bounded retries.

    The operation may return a plain value, return a Result, or raise.
    Raised exceptions and failed Results are classified into AEMError and
    checked against the policy.

    Usage:
        executor = RetryExecutor(RetryPolicy.for_upstream())
        result = await executor.execute(fetch_page, fallback=read_stale_copy)
        if result.success:
            page = result.value

    Attributes:
        policy: Default policy, overridable per call
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    async def execute(
        self,
        operation: Operation,
        *,
        policy: Optional[RetryPolicy] = None,
        fallback: Optional[Operation] = None,
        on_retry: Optional[Callable[[RetryAttempt], Any]] = None,
        on_fallback: Optional[Callable[[AEMError], Any]] = None,
        context: Optional[str] = None,
    ) -> RetryResult:
        """
        Execute ``operation`` with retry logic.

        Args:
            operation: Zero-argument coroutine factory
            policy: Overrides the executor's default policy for this call
            fallback: Invoked once if the operation ultimately fails
            on_retry: Called before each backoff wait
            on_fallback: Called with the last error before the fallback runs
            context: Label included in log events

        Returns:
            RetryResult describing the final outcome
        """
        policy = policy or self.policy
        started = time.monotonic()
        attempts = 0
        last_error: Optional[AEMError] = None

        while attempts < policy.max_attempts:
            attempts += 1
            outcome = await self._attempt(operation, policy)

            if outcome.success:
                return RetryResult(
                    success=True,
                    value=outcome.value,
                    attempts=attempts,
                    total_time=time.monotonic() - started,
                )

            last_error = outcome.error
            logger.warning(
                "retry_attempt_failed",
                context=context,
                attempt=attempts,
                max_attempts=policy.max_attempts,
                error_code=last_error.code.value,
                error=last_error.message,
            )

            if not policy.is_retryable(last_error):
                logger.info(
                    "retry_not_retryable",
                    context=context,
                    attempt=attempts,
                    error_code=last_error.code.value,
                )
                break

            if attempts >= policy.max_attempts:
                logger.error(
                    "retry_attempts_exhausted",
                    context=context,
                    attempts=attempts,
                    error_code=last_error.code.value,
                )
                break

            delay = policy.delay_for(attempts)
            if on_retry is not None:
                await _maybe_await(
                    on_retry(
                        RetryAttempt(
                            attempt_number=attempts,
                            last_error=last_error,
                            elapsed=time.monotonic() - started,
                            next_delay=delay,
                        )
                    )
                )

            logger.debug(
                "retry_backoff",
                context=context,
                attempt=attempts,
                delay_seconds=delay,
            )
            await self._sleep(delay)

        if fallback is not None:
            return await self._run_fallback(
                fallback, last_error, attempts, started, on_fallback, context
            )

        return RetryResult(
            success=False,
            error=last_error,
            attempts=attempts,
            total_time=time.monotonic() - started,
        )

    async def _attempt(self, operation: Operation, policy: RetryPolicy) -> Result:
        try:
            if policy.timeout is not None:
                value = await asyncio.wait_for(operation(), timeout=policy.timeout)
            else:
                value = await operation()
        except asyncio.TimeoutError:
            return Result.fail(RequestTimeoutError(timeout_seconds=policy.timeout))
        except Exception as e:
            return Result.fail(classify_exception(e))

        if isinstance(value, Result):
            return value
        return Result.ok(value)

    async def _run_fallback(
        self,
        fallback: Operation,
        last_error: Optional[AEMError],
        attempts: int,
        started: float,
        on_fallback: Optional[Callable[[AEMError], Any]],
        context: Optional[str],
    ) -> RetryResult:
        logger.info("retry_fallback_started", context=context, attempts=attempts)

        if on_fallback is not None and last_error is not None:
            await _maybe_await(on_fallback(last_error))

        try:
            value = await fallback()
        except Exception as e:
            outcome: Result = Result.fail(classify_exception(e))
        else:
            outcome = value if isinstance(value, Result) else Result.ok(value)

        if outcome.success:
            return RetryResult(
                success=True,
                value=outcome.value,
                attempts=attempts,
                total_time=time.monotonic() - started,
                fallback_used=True,
            )

        logger.error(
            "retry_fallback_failed",
            context=context,
            error_code=outcome.error.code.value,
        )
        return RetryResult(
            success=False,
            error=outcome.error,
            attempts=attempts,
            total_time=time.monotonic() - started,
        )


async def _maybe_await(value: Union[Any, Awaitable[Any]]) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value
