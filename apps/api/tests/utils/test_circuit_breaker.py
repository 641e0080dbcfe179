"""Tests for the async circuit breaker."""

import pytest

from utils.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerOpen,
    CircuitState,
    get_circuit_breaker,
    get_circuit_breaker_stats,
)


async def fail(breaker: CircuitBreaker, exc: Exception = ConnectionError("down")):
    with pytest.raises(type(exc)):
        async with breaker:
            raise exc


async def succeed(breaker: CircuitBreaker):
    async with breaker:
        pass


class TestCircuitBreaker:
    """Test state transitions."""

    @pytest.mark.asyncio
    async def test_opens_after_threshold(self):
        """Should open after consecutive failures and reject further calls."""
        breaker = CircuitBreaker(name="test", failure_threshold=2)

        await fail(breaker)
        assert breaker.state == CircuitState.CLOSED
        await fail(breaker)
        assert breaker.state == CircuitState.OPEN

        with pytest.raises(CircuitBreakerOpen) as exc_info:
            await succeed(breaker)
        assert exc_info.value.name == "test"
        assert breaker.get_stats().total_rejections == 1

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self):
        breaker = CircuitBreaker(name="test", failure_threshold=2)

        await fail(breaker)
        await succeed(breaker)
        await fail(breaker)

        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_ignores_unlisted_exceptions(self):
        """Should only count the configured exception types."""
        breaker = CircuitBreaker(name="test", failure_threshold=1, exceptions={ConnectionError})

        await fail(breaker, ValueError("bad input"))
        assert breaker.state == CircuitState.CLOSED

        await fail(breaker, ConnectionError("down"))
        assert breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_half_open_recovery(self):
        """Should let a trial call through after the timeout and close on success."""
        breaker = CircuitBreaker(
            name="test", failure_threshold=1, recovery_timeout=0.0, success_threshold=1
        )
        await fail(breaker)

        assert breaker.state == CircuitState.HALF_OPEN
        await succeed(breaker)
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self):
        breaker = CircuitBreaker(name="test", failure_threshold=1, recovery_timeout=0.0)
        await fail(breaker)
        assert breaker.state == CircuitState.HALF_OPEN

        await fail(breaker)
        assert breaker._state == CircuitState.OPEN

    def test_time_until_retry_closed(self):
        assert CircuitBreaker(name="test").time_until_retry == 0.0

    def test_reset(self):
        breaker = CircuitBreaker(name="test")
        breaker._open()

        breaker.reset()
        assert breaker.state == CircuitState.CLOSED


class TestRegistry:
    def test_same_name_same_breaker(self):
        assert get_circuit_breaker("embeddings") is get_circuit_breaker("embeddings")

    def test_stats_listed(self):
        get_circuit_breaker("embeddings")
        stats = get_circuit_breaker_stats()

        assert [s.name for s in stats] == ["embeddings"]
        assert stats[0].state == "closed"
