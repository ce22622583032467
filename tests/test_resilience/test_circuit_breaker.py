"""Unit tests for the circuit breaker and its registry."""

import asyncio

import pytest

from src.aem.exceptions import (
    AuthenticationError,
    NetworkError,
    NotFoundError,
    ServerError,
)
from src.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
)
from src.resilience.result import Result


class FakeClock:
    def __init__(self, start: float = 100.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def succeed(value="ok"):
    async def operation():
        return Result.ok(value)

    return operation


def fail_with(error):
    async def operation():
        return Result.fail(error)

    return operation


class TestCircuitBreaker:
    """Test suite for CircuitBreaker class."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def breaker(self, clock):
        config = CircuitBreakerConfig(
            failure_threshold=5, recovery_timeout=60, monitoring_period=300
        )
        return CircuitBreaker("aem-author.example.com:443", config, clock=clock)

    async def trip(self, breaker, count=5):
        for _ in range(count):
            await breaker.execute(fail_with(ServerError("boom", status_code=503)))

    @pytest.mark.asyncio
    async def test_starts_closed(self, breaker):
        """Test new breakers are CLOSED and pass calls through."""
        result = await breaker.execute(succeed("page"))

        assert breaker.state == CircuitState.CLOSED
        assert result.success
        assert result.value == "page"

    @pytest.mark.asyncio
    async def test_opens_after_threshold_and_fails_fast(self, breaker):
        """Test five server errors open the breaker and the sixth call is not invoked."""
        await self.trip(breaker)
        assert breaker.state == CircuitState.OPEN

        invoked = False

        async def operation():
            nonlocal invoked
            invoked = True
            return Result.ok("x")

        result = await breaker.execute(operation)

        assert invoked is False
        assert not result.success
        assert result.error.code == "SERVER_ERROR"
        assert result.error.details["circuit_open"] is True
        assert result.error.details["breaker"] == "aem-author.example.com:443"
        assert result.error.retry_after_ms == 60000

    @pytest.mark.asyncio
    async def test_below_threshold_stays_closed(self, breaker):
        """Test fewer failures than the threshold keep it CLOSED."""
        await self.trip(breaker, count=4)

        assert breaker.state == CircuitState.CLOSED
        assert breaker.stats().failure_count == 4

    @pytest.mark.asyncio
    async def test_failures_outside_window_are_forgotten(self, breaker, clock):
        """Test failures older than the monitoring period do not count."""
        await self.trip(breaker, count=4)
        clock.advance(301)
        await self.trip(breaker, count=1)

        assert breaker.state == CircuitState.CLOSED
        assert breaker.stats().failure_count == 1

    @pytest.mark.asyncio
    async def test_unexpected_errors_never_trip(self, breaker):
        """Test validation-type errors do not count towards the threshold."""
        for _ in range(10):
            await breaker.execute(fail_with(NotFoundError()))
            await breaker.execute(fail_with(AuthenticationError()))

        assert breaker.state == CircuitState.CLOSED
        assert breaker.stats().failure_count == 0

    @pytest.mark.asyncio
    async def test_raised_exceptions_are_classified(self, breaker):
        """Test an exception escaping the operation becomes a failed Result."""

        async def operation():
            raise ConnectionError("refused")

        result = await breaker.execute(operation)

        assert not result.success
        assert isinstance(result.error, NetworkError)
        assert breaker.stats().failure_count == 1

    @pytest.mark.asyncio
    async def test_half_open_trial_success_closes(self, breaker, clock):
        """Test a successful trial after recovery_timeout closes the breaker."""
        await self.trip(breaker)
        clock.advance(60)

        result = await breaker.execute(succeed())

        assert result.success
        assert breaker.state == CircuitState.CLOSED
        stats = breaker.stats()
        assert stats.failure_count == 0
        assert stats.next_attempt_at is None

    @pytest.mark.asyncio
    async def test_half_open_trial_failure_reopens(self, breaker, clock):
        """Test a failed trial reopens with a new recovery deadline."""
        await self.trip(breaker)
        clock.advance(60)

        await breaker.execute(fail_with(NetworkError()))

        assert breaker.state == CircuitState.OPEN
        rejected = await breaker.execute(succeed())
        assert rejected.error.details["circuit_open"] is True

    @pytest.mark.asyncio
    async def test_still_open_before_recovery_timeout(self, breaker, clock):
        """Test calls keep failing fast until recovery_timeout elapses."""
        await self.trip(breaker)
        clock.advance(59)

        result = await breaker.execute(succeed())

        assert not result.success
        assert breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_half_open_admits_one_trial(self, breaker, clock):
        """Test concurrent callers are rejected while the trial is in flight."""
        await self.trip(breaker)
        clock.advance(60)
        gate = asyncio.Event()

        async def slow_trial():
            await gate.wait()
            return Result.ok("recovered")

        trial = asyncio.create_task(breaker.execute(slow_trial))
        await asyncio.sleep(0)
        assert breaker.state == CircuitState.HALF_OPEN

        rejected = await breaker.execute(succeed())
        gate.set()
        trial_result = await trial

        assert rejected.error.details["circuit_open"] is True
        assert trial_result.value == "recovered"
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_trial_with_unexpected_error_releases_slot(self, breaker, clock):
        """Test a trial ending in a client error leaves HALF_OPEN with a free slot."""
        await self.trip(breaker)
        clock.advance(60)

        await breaker.execute(fail_with(NotFoundError()))
        assert breaker.state == CircuitState.HALF_OPEN

        result = await breaker.execute(succeed())
        assert result.success
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_successes_do_not_reset_window(self, breaker):
        """Test successes in CLOSED leave earlier failures counted."""
        await self.trip(breaker, count=4)
        await breaker.execute(succeed())
        await self.trip(breaker, count=1)

        assert breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_reset(self, breaker):
        """Test reset() forces CLOSED with zero counters."""
        await self.trip(breaker)

        breaker.reset()

        stats = breaker.stats()
        assert stats.state == CircuitState.CLOSED
        assert stats.failure_count == 0
        assert stats.success_count == 0

    @pytest.mark.asyncio
    async def test_force_open(self, breaker):
        """Test force_open() rejects calls without invoking them."""
        breaker.force_open()

        result = await breaker.execute(succeed())

        assert breaker.state == CircuitState.OPEN
        assert not result.success

    @pytest.mark.asyncio
    async def test_stats_to_dict(self, breaker):
        """Test stats serialize with string state and ISO timestamps."""
        await self.trip(breaker)

        data = breaker.stats().to_dict()

        assert data["state"] == "OPEN"
        assert data["total_requests"] == 5
        assert isinstance(data["next_attempt_at"], str)
        assert isinstance(data["last_failure_at"], str)


class TestCircuitBreakerConfig:
    """Test suite for breaker configuration."""

    def test_defaults(self):
        config = CircuitBreakerConfig()

        assert config.failure_threshold == 5
        assert config.recovery_timeout == 60
        assert config.monitoring_period == 300

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("CB_FAILURE_THRESHOLD", "3")
        monkeypatch.setenv("CB_RECOVERY_TIMEOUT", "10")
        monkeypatch.setenv("CB_MONITORING_PERIOD", "120")

        config = CircuitBreakerConfig.from_env()

        assert config.failure_threshold == 3
        assert config.recovery_timeout == 10
        assert config.monitoring_period == 120


class TestCircuitBreakerRegistry:
    """Test suite for CircuitBreakerRegistry class."""

    def test_get_creates_once(self):
        registry = CircuitBreakerRegistry()

        first = registry.get("aem-a:443")
        second = registry.get("aem-a:443")

        assert first is second
        assert "aem-a:443" in registry
        assert len(registry) == 1

    @pytest.mark.asyncio
    async def test_breakers_fail_independently(self):
        registry = CircuitBreakerRegistry(CircuitBreakerConfig(failure_threshold=1))

        await registry.get("aem-a:443").execute(fail_with(ServerError()))

        assert registry.get("aem-a:443").state == CircuitState.OPEN
        assert registry.get("aem-b:443").state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_reset_all_and_stats(self):
        registry = CircuitBreakerRegistry(CircuitBreakerConfig(failure_threshold=1))
        await registry.get("aem-a:443").execute(fail_with(ServerError()))

        registry.reset_all()

        assert registry.all_stats()["aem-a:443"]["state"] == "CLOSED"

    def test_remove_and_clear(self):
        registry = CircuitBreakerRegistry()
        registry.get("aem-a:443")
        registry.get("aem-b:443")

        assert registry.remove("aem-a:443") is True
        assert registry.remove("aem-a:443") is False
        registry.clear()
        assert len(registry) == 0
