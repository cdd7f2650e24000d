"""
Tests for the Circuit Breaker

State transitions, probe admission and rejection without invocation.
"""

import asyncio

import pytest

from txguard.core.recovery import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitOpenError,
    CircuitState,
    NetworkError,
)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def breaker(clock: FakeClock) -> CircuitBreaker:
    """Breaker opening after 3 failures with a 1 second cool-down."""
    return CircuitBreaker(
        name="rpc",
        config=CircuitBreakerConfig(failure_threshold=3, open_timeout_seconds=1.0),
        clock=clock,
    )


async def failing():
    raise NetworkError("down")


async def succeeding():
    return "ok"


# =============================================================================
# Circuit Breaker Tests
# =============================================================================

class TestCircuitBreakerConfig:

    def test_invalid_threshold(self):
        with pytest.raises(ValueError):
            CircuitBreakerConfig(failure_threshold=0)

    def test_invalid_timeout(self):
        with pytest.raises(ValueError):
            CircuitBreakerConfig(open_timeout_seconds=-1)


class TestCircuitBreaker:
    """Tests for CircuitBreaker."""

    @pytest.mark.asyncio
    async def test_starts_closed(self, breaker: CircuitBreaker):
        assert breaker.state == CircuitState.CLOSED
        assert breaker.is_closed
        assert await breaker.execute(succeeding) == "ok"

    @pytest.mark.asyncio
    async def test_opens_after_threshold(self, breaker: CircuitBreaker):
        for _ in range(3):
            with pytest.raises(NetworkError):
                await breaker.execute(failing)

        assert breaker.state == CircuitState.OPEN
        assert breaker.failure_count == 3

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self, breaker: CircuitBreaker):
        for _ in range(2):
            with pytest.raises(NetworkError):
                await breaker.execute(failing)
        await breaker.execute(succeeding)

        assert breaker.failure_count == 0
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_open_rejects_without_invoking(self, breaker: CircuitBreaker, clock: FakeClock):
        for _ in range(3):
            with pytest.raises(NetworkError):
                await breaker.execute(failing)

        calls = 0

        async def counted():
            nonlocal calls
            calls += 1
            return "ok"

        clock.advance(0.5)
        with pytest.raises(CircuitOpenError) as exc_info:
            await breaker.execute(counted)

        assert calls == 0
        assert exc_info.value.retry_after == pytest.approx(0.5)

    @pytest.mark.asyncio
    async def test_threshold_and_timeout_scenario(self, breaker: CircuitBreaker, clock: FakeClock):
        """3 failures open it, calls before 1s are rejected, a probe after 1s closes it."""
        for _ in range(3):
            with pytest.raises(NetworkError):
                await breaker.execute(failing)

        clock.advance(0.9)
        with pytest.raises(CircuitOpenError):
            await breaker.execute(succeeding)

        clock.advance(0.2)
        assert await breaker.execute(succeeding) == "ok"
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_failed_probe_reopens(self, breaker: CircuitBreaker, clock: FakeClock):
        for _ in range(3):
            with pytest.raises(NetworkError):
                await breaker.execute(failing)

        clock.advance(1.0)
        with pytest.raises(NetworkError):
            await breaker.execute(failing)

        assert breaker.state == CircuitState.OPEN
        assert breaker.seconds_until_probe() == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_only_one_probe_in_flight(self, breaker: CircuitBreaker, clock: FakeClock):
        for _ in range(3):
            with pytest.raises(NetworkError):
                await breaker.execute(failing)
        clock.advance(1.0)

        release = asyncio.Event()
        probe_calls = 0

        async def slow_probe():
            nonlocal probe_calls
            probe_calls += 1
            await release.wait()
            return "recovered"

        probe = asyncio.create_task(breaker.execute(slow_probe))
        await asyncio.sleep(0)
        assert breaker.state == CircuitState.HALF_OPEN

        with pytest.raises(CircuitOpenError):
            await breaker.execute(slow_probe)

        release.set()
        assert await probe == "recovered"
        assert probe_calls == 1
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_cancelled_probe_releases_slot(self, breaker: CircuitBreaker, clock: FakeClock):
        for _ in range(3):
            with pytest.raises(NetworkError):
                await breaker.execute(failing)
        clock.advance(1.0)

        async def hang():
            await asyncio.sleep(10)

        probe = asyncio.create_task(breaker.execute(hang))
        await asyncio.sleep(0)
        probe.cancel()
        with pytest.raises(asyncio.CancelledError):
            await probe

        assert await breaker.execute(succeeding) == "ok"
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_concurrent_failures_are_all_counted(self, clock: FakeClock):
        breaker = CircuitBreaker(
            config=CircuitBreakerConfig(failure_threshold=10, open_timeout_seconds=1.0),
            clock=clock,
        )

        async def yield_then_fail():
            await asyncio.sleep(0)
            raise NetworkError()

        results = await asyncio.gather(
            *(breaker.execute(yield_then_fail) for _ in range(6)),
            return_exceptions=True,
        )

        assert all(isinstance(r, NetworkError) for r in results)
        assert breaker.failure_count == 6

    @pytest.mark.asyncio
    async def test_reset(self, breaker: CircuitBreaker):
        for _ in range(3):
            with pytest.raises(NetworkError):
                await breaker.execute(failing)

        breaker.reset()

        assert breaker.is_closed
        assert breaker.failure_count == 0
        assert await breaker.execute(succeeding) == "ok"

    @pytest.mark.asyncio
    async def test_snapshot(self, breaker: CircuitBreaker, clock: FakeClock):
        with pytest.raises(NetworkError):
            await breaker.execute(failing)

        snapshot = breaker.snapshot()

        assert snapshot.name == "rpc"
        assert snapshot.state == CircuitState.CLOSED
        assert snapshot.failure_count == 1
        assert snapshot.last_failure_time == clock.now
        assert snapshot.threshold == 3
