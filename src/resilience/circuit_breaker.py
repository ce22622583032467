"""
Circuit breaker for upstream AEM targets.

States:
- CLOSED: Normal operation, calls pass through
- OPEN: Upstream is failing, calls are rejected without being invoked
- HALF_OPEN: One trial call tests whether the upstream recovered

Transitions:
- CLOSED -> OPEN: failure_threshold expected failures within monitoring_period
- OPEN -> HALF_OPEN: first call after recovery_timeout elapsed (the trial)
- HALF_OPEN -> CLOSED: trial succeeds
- HALF_OPEN -> OPEN: trial fails
"""

import asyncio
import os
import time
from collections import deque
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import structlog
from pydantic import BaseModel, Field

from src.aem.exceptions import CircuitOpenError, classify_exception
from src.models.responses import ErrorType
from src.resilience.result import Result

logger = structlog.get_logger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


DEFAULT_EXPECTED_ERRORS = frozenset(
    {ErrorType.NETWORK_ERROR, ErrorType.TIMEOUT_ERROR, ErrorType.SERVER_ERROR}
)


class CircuitBreakerConfig(BaseModel):
    """
    Thresholds for one circuit breaker.

    Durations are in seconds.
    """

    failure_threshold: int = Field(5, ge=1, description="Failures before opening")
    recovery_timeout: float = Field(60.0, gt=0, description="Seconds spent OPEN before a trial")
    monitoring_period: float = Field(300.0, gt=0, description="Window in which failures count")
    expected_errors: frozenset[ErrorType] = Field(
        DEFAULT_EXPECTED_ERRORS,
        description="Error codes that count towards the threshold",
    )

    @classmethod
    def from_env(cls) -> "CircuitBreakerConfig":
        return cls(
            failure_threshold=int(os.getenv("CB_FAILURE_THRESHOLD", "5")),
            recovery_timeout=float(os.getenv("CB_RECOVERY_TIMEOUT", "60")),
            monitoring_period=float(os.getenv("CB_MONITORING_PERIOD", "300")),
        )


@dataclass
class CircuitBreakerStats:
    """Snapshot of a breaker's state."""

    name: str
    state: CircuitState
    failure_count: int
    success_count: int
    total_requests: int
    last_failure_at: Optional[datetime] = None
    next_attempt_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        for key in ("last_failure_at", "next_attempt_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


class CircuitBreaker:
    """
    Circuit breaker for a single upstream target.

    The wrapped operation returns a Result; the breaker judges success or
    failure from that value. State transitions are serialized by an
    asyncio.Lock that is never held while the operation runs.

    Usage:
        breaker = CircuitBreaker("aem-author.example.com:443")
        result = await breaker.execute(lambda: executor.execute(attempt))

    Attributes:
        name: Stable target identifier
        config: Thresholds
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failures: deque[float] = deque()
        self._success_count = 0
        self._total_requests = 0
        self._last_failure_at: Optional[float] = None
        self._next_attempt_at: Optional[float] = None
        self._trial_in_flight = False
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    async def execute(self, operation: Callable[[], Awaitable[Result]]) -> Result:
        """
        Run ``operation`` under breaker protection.

        Args:
            operation: Zero-argument coroutine factory returning a Result

        Returns:
            The operation's Result, or a failed Result carrying
            CircuitOpenError when the call is rejected
        """
        async with self._lock:
            self._total_requests += 1
            rejection = self._admit()
            is_trial = self._state == CircuitState.HALF_OPEN

        if rejection is not None:
            return Result.fail(rejection)

        try:
            result = await operation()
        except asyncio.CancelledError:
            if is_trial:
                async with self._lock:
                    self._trial_in_flight = False
            raise
        except Exception as e:
            result = Result.fail(classify_exception(e))

        async with self._lock:
            if result.success:
                self._on_success(is_trial)
            else:
                self._on_failure(result, is_trial)

        return result

    def _admit(self) -> Optional[CircuitOpenError]:
        """Decide whether a call may proceed. Caller holds the lock."""
        now = self._clock()

        if self._state == CircuitState.OPEN:
            if self._next_attempt_at is not None and now < self._next_attempt_at:
                logger.warning(
                    "circuit_breaker_rejected",
                    breaker=self.name,
                    state=self._state.value,
                )
                return self._open_error(now)

            self._state = CircuitState.HALF_OPEN
            self._trial_in_flight = True
            logger.info("circuit_breaker_half_open", breaker=self.name)
            return None

        if self._state == CircuitState.HALF_OPEN:
            if self._trial_in_flight:
                logger.warning(
                    "circuit_breaker_rejected",
                    breaker=self.name,
                    state=self._state.value,
                    reason="trial_in_flight",
                )
                return self._open_error(now)
            self._trial_in_flight = True

        return None

    def _open_error(self, now: float) -> CircuitOpenError:
        remaining = 0.0
        if self._next_attempt_at is not None:
            remaining = max(0.0, self._next_attempt_at - now)
        error = CircuitOpenError(self.name, retry_after_ms=int(remaining * 1000))
        error.with_details(state=self._state.value)
        return error

    def _on_success(self, is_trial: bool) -> None:
        self._success_count += 1

        if is_trial:
            self._close()
            logger.info("circuit_breaker_closed", breaker=self.name, reason="trial_succeeded")

    def _on_failure(self, result: Result, is_trial: bool) -> None:
        error = result.error
        if error is None or not self._is_expected(error):
            if is_trial:
                # Trial ended with a client-side error: upstream health unknown
                self._trial_in_flight = False
            return

        now = self._clock()
        self._last_failure_at = now
        self._failures.append(now)
        self._prune(now)

        if is_trial or self._state == CircuitState.HALF_OPEN:
            self._open(now)
            logger.warning(
                "circuit_breaker_reopened",
                breaker=self.name,
                error_code=error.code.value,
            )
        elif (
            self._state == CircuitState.CLOSED
            and len(self._failures) >= self.config.failure_threshold
        ):
            self._open(now)
            logger.warning(
                "circuit_breaker_opened",
                breaker=self.name,
                failure_count=len(self._failures),
                error_code=error.code.value,
            )

    def _is_expected(self, error: Any) -> bool:
        if getattr(error, "details", {}).get("circuit_open"):
            return False
        return error.code in self.config.expected_errors

    def _prune(self, now: float) -> None:
        """Drop failures that fell out of the monitoring window."""
        window_start = now - self.config.monitoring_period
        while self._failures and self._failures[0] < window_start:
            self._failures.popleft()

    def _open(self, now: float) -> None:
        self._state = CircuitState.OPEN
        self._next_attempt_at = now + self.config.recovery_timeout
        self._trial_in_flight = False

    def _close(self) -> None:
        self._state = CircuitState.CLOSED
        self._failures.clear()
        self._success_count = 0
        self._last_failure_at = None
        self._next_attempt_at = None
        self._trial_in_flight = False

    def reset(self) -> None:
        """Force CLOSED with zero counters (operator action)."""
        self._close()
        logger.info("circuit_breaker_reset", breaker=self.name)

    def force_open(self) -> None:
        """Force OPEN until recovery_timeout elapses (operator action)."""
        now = self._clock()
        self._last_failure_at = now
        self._open(now)
        logger.warning("circuit_breaker_forced_open", breaker=self.name)

    def stats(self) -> CircuitBreakerStats:
        """Return a snapshot of counters and timestamps."""
        self._prune(self._clock())
        return CircuitBreakerStats(
            name=self.name,
            state=self._state,
            failure_count=len(self._failures),
            success_count=self._success_count,
            total_requests=self._total_requests,
            last_failure_at=self._to_wall_clock(self._last_failure_at),
            next_attempt_at=self._to_wall_clock(self._next_attempt_at),
        )

    def _to_wall_clock(self, moment: Optional[float]) -> Optional[datetime]:
        if moment is None:
            return None
        offset = moment - self._clock()
        return datetime.now(timezone.utc) + timedelta(seconds=offset)


class CircuitBreakerRegistry:
    """
    Registry of breakers keyed by target identifier.

    Constructed explicitly by the application wiring and injected into
    every pipeline that talks to the same targets.

    Usage:
        registry = CircuitBreakerRegistry()
        breaker = registry.get("aem-author.example.com:443")
    """

    def __init__(
        self,
        default_config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._breakers: dict[str, CircuitBreaker] = {}
        self._default_config = default_config or CircuitBreakerConfig()
        self._clock = clock

    def get(self, name: str, config: Optional[CircuitBreakerConfig] = None) -> CircuitBreaker:
        """Get or create the breaker for a target."""
        breaker = self._breakers.get(name)
        if breaker is None:
            breaker = CircuitBreaker(name, config or self._default_config, clock=self._clock)
            self._breakers[name] = breaker
            logger.debug("circuit_breaker_created", breaker=name)
        return breaker

    def all_stats(self) -> dict[str, dict[str, Any]]:
        return {name: b.stats().to_dict() for name, b in self._breakers.items()}

    def reset_all(self) -> None:
        for breaker in self._breakers.values():
            breaker.reset()
        logger.info("circuit_breakers_reset", count=len(self._breakers))

    def remove(self, name: str) -> bool:
        return self._breakers.pop(name, None) is not None

    def clear(self) -> None:
        self._breakers.clear()

    def __contains__(self, name: str) -> bool:
        return name in self._breakers

    def __len__(self) -> int:
        return len(self._breakers)
