"""Tests for the circuit breaker."""

from unittest.mock import AsyncMock

import pytest

from cli_agents.exceptions import CircuitOpenError, CliTimeoutError, InvalidArgumentError, NonZeroExitError
from cli_agents.services.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitState


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def breaker(clock):
    return CircuitBreaker("test", CircuitBreakerConfig.default(), clock=clock)


async def _fail():
    raise NonZeroExitError(1)


async def _fail_n(breaker, n):
    for _ in range(n):
        with pytest.raises(NonZeroExitError):
            await breaker.call(_fail)


class TestCircuitBreakerConfig:
    """Test breaker presets."""

    def test_presets(self):
        """Test the preset thresholds."""
        assert CircuitBreakerConfig.default() == CircuitBreakerConfig(
            failure_threshold=5, recovery_timeout=30.0, sliding_window=120.0
        )
        assert CircuitBreakerConfig.sensitive().failure_threshold == 3
        assert CircuitBreakerConfig.sensitive().recovery_timeout == 60.0
        assert CircuitBreakerConfig.tolerant().failure_threshold == 10
        assert CircuitBreakerConfig.tolerant().sliding_window == 300.0

    def test_preset_by_name(self):
        """Test lookup by name."""
        assert CircuitBreakerConfig.preset("Sensitive") == CircuitBreakerConfig.sensitive()
        with pytest.raises(ValueError):
            CircuitBreakerConfig.preset("paranoid")


class TestCircuitBreakerTransitions:
    """Test state transitions."""

    @pytest.mark.asyncio
    async def test_opens_at_threshold(self, breaker):
        """Test that the fifth failure opens the breaker."""
        await _fail_n(breaker, 4)
        assert breaker.state == CircuitState.CLOSED

        await _fail_n(breaker, 1)
        assert breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_open_breaker_does_not_invoke(self, breaker):
        """Test that calls fail fast while OPEN."""
        await _fail_n(breaker, 5)
        func = AsyncMock(return_value="ok")

        with pytest.raises(CircuitOpenError) as exc_info:
            await breaker.call(func)

        func.assert_not_awaited()
        assert exc_info.value.breaker_name == "test"
        assert exc_info.value.retry_after == pytest.approx(30.0)

    @pytest.mark.asyncio
    async def test_half_open_after_recovery_timeout(self, breaker, clock):
        """Test that the breaker allows a trial after the recovery timeout."""
        await _fail_n(breaker, 5)
        clock.advance(29.9)
        assert breaker.state == CircuitState.OPEN

        clock.advance(0.1)
        assert breaker.state == CircuitState.HALF_OPEN

    @pytest.mark.asyncio
    async def test_successful_trial_closes(self, breaker, clock):
        """Test that a successful trial closes the breaker and clears failures."""
        await _fail_n(breaker, 5)
        clock.advance(30)

        assert await breaker.call(AsyncMock(return_value="ok")) == "ok"

        metrics = breaker.metrics()
        assert metrics.state == CircuitState.CLOSED
        assert metrics.failures == 0

    @pytest.mark.asyncio
    async def test_failed_trial_reopens(self, breaker, clock):
        """Test that a failed trial reopens and restarts the recovery timer."""
        await _fail_n(breaker, 5)
        clock.advance(30)

        await _fail_n(breaker, 1)

        assert breaker.state == CircuitState.OPEN
        clock.advance(29)
        assert breaker.state == CircuitState.OPEN

    def test_single_trial_in_half_open(self, breaker, clock):
        """Test that only one caller gets the trial slot."""
        for _ in range(5):
            breaker.record_failure()
        clock.advance(30)

        assert breaker.acquire() is True
        with pytest.raises(CircuitOpenError):
            breaker.acquire()

        breaker.release()
        assert breaker.acquire() is True

    def test_closed_acquire_is_not_trial(self, breaker):
        """Test that CLOSED calls are not trials."""
        assert breaker.acquire() is False

    @pytest.mark.asyncio
    async def test_uncounted_exception_passes_through(self, breaker, clock):
        """Test that argument errors neither count nor consume the trial."""
        for _ in range(5):
            breaker.record_failure()
        clock.advance(30)

        async def bad_args():
            raise InvalidArgumentError("bad")

        with pytest.raises(InvalidArgumentError):
            await breaker.call(bad_args)

        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.acquire() is True

    @pytest.mark.asyncio
    async def test_timeouts_are_counted(self, clock):
        """Test that timeouts count toward opening."""
        breaker = CircuitBreaker("t", CircuitBreakerConfig.sensitive(), clock=clock)

        async def slow():
            raise CliTimeoutError(1.0)

        for _ in range(3):
            with pytest.raises(CliTimeoutError):
                await breaker.call(slow)

        assert breaker.state == CircuitState.OPEN

    def test_reset(self, breaker):
        """Test manual reset."""
        for _ in range(5):
            breaker.record_failure()

        breaker.reset()

        assert breaker.state == CircuitState.CLOSED
        assert breaker.metrics().failures == 0


class TestCircuitBreakerWindow:
    """Test sliding-window decay."""

    def test_counts_halve_per_window(self, breaker, clock):
        """Test that failures halve once the window elapses."""
        for _ in range(4):
            breaker.record_failure()

        clock.advance(120)
        assert breaker.metrics().failures == 2

        clock.advance(240)
        assert breaker.metrics().failures == 0

    def test_decay_delays_opening(self, breaker, clock):
        """Test that old failures weigh less."""
        for _ in range(4):
            breaker.record_failure()
        clock.advance(120)

        breaker.record_failure()
        breaker.record_failure()

        assert breaker.state == CircuitState.CLOSED
        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN


class TestCircuitMetrics:
    """Test metrics snapshots."""

    @pytest.mark.asyncio
    async def test_failure_rate_and_health(self, breaker):
        """Test counts, rate and timestamps."""
        await breaker.call(AsyncMock(return_value=1))
        await _fail_n(breaker, 1)

        metrics = breaker.metrics()
        assert metrics.successes == 1
        assert metrics.failures == 1
        assert metrics.failure_rate == 0.5
        assert metrics.last_failure_at is not None
        assert metrics.last_success_at is not None
        assert not metrics.is_healthy

    def test_fresh_breaker_is_healthy(self, breaker):
        """Test an unused breaker."""
        metrics = breaker.metrics()

        assert metrics.failure_rate == 0.0
        assert metrics.is_healthy


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
