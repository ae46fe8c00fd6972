"""Tests for circuit breaker resilience patterns."""

from __future__ import annotations

import asyncio
import contextlib

import pytest

from carecore.config import EnrichmentSettings
from carecore.resilience import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerError,
    CircuitBreakerRegistry,
    CircuitState,
)


async def failing_func():
    raise ValueError("Service error")


async def success_func():
    return "success"


class TestCircuitBreakerConfig:
    """Test suite for CircuitBreakerConfig."""

    def test_default_config(self) -> None:
        """Test default configuration values."""
        config = CircuitBreakerConfig()

        assert config.failure_threshold == 5
        assert config.success_threshold == 2
        assert config.timeout == 60.0
        assert config.call_timeout == 2.0

    def test_from_settings(self) -> None:
        settings = EnrichmentSettings(timeout_seconds=0.5, failure_threshold=2, reset_timeout_seconds=10.0)

        config = CircuitBreakerConfig.from_settings(settings)

        assert config.call_timeout == 0.5
        assert config.failure_threshold == 2
        assert config.timeout == 10.0


class TestCircuitBreaker:
    """Test suite for CircuitBreaker."""

    @pytest.fixture
    def breaker(self) -> CircuitBreaker:
        """Create circuit breaker with test configuration."""
        config = CircuitBreakerConfig(
            failure_threshold=3,
            success_threshold=2,
            timeout=5.0,
            call_timeout=0.1,
        )
        return CircuitBreaker("memory", config)

    @pytest.mark.asyncio
    async def test_initial_state(self, breaker: CircuitBreaker) -> None:
        """Test circuit starts in CLOSED state."""
        assert breaker.state == CircuitState.CLOSED
        assert breaker.stats.total_calls == 0

    @pytest.mark.asyncio
    async def test_successful_call(self, breaker: CircuitBreaker) -> None:
        """Test successful call through circuit breaker."""
        result = await breaker.call(success_func)

        assert result == "success"
        assert breaker.stats.total_calls == 1
        assert breaker.stats.successful_calls == 1
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_arguments_passed_through(self, breaker: CircuitBreaker) -> None:
        async def add(a: int, b: int = 0) -> int:
            return a + b

        assert await breaker.call(add, 2, b=3) == 5

    @pytest.mark.asyncio
    async def test_failed_call(self, breaker: CircuitBreaker) -> None:
        """Test failed call increments failure counter and re-raises."""
        with pytest.raises(ValueError):
            await breaker.call(failing_func)

        assert breaker.stats.failed_calls == 1
        assert breaker.stats.consecutive_failures == 1
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_circuit_opens_after_threshold(self, breaker: CircuitBreaker) -> None:
        """Test circuit opens after consecutive failures."""
        for _ in range(3):
            with contextlib.suppress(ValueError):
                await breaker.call(failing_func)

        assert breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_success_resets_consecutive_failures(self, breaker: CircuitBreaker) -> None:
        for _ in range(2):
            with contextlib.suppress(ValueError):
                await breaker.call(failing_func)
        await breaker.call(success_func)
        with contextlib.suppress(ValueError):
            await breaker.call(failing_func)

        assert breaker.state == CircuitState.CLOSED
        assert breaker.stats.consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_open_circuit_rejects_calls(self, breaker: CircuitBreaker) -> None:
        """Test open circuit rejects calls without invoking the function."""
        for _ in range(3):
            with contextlib.suppress(ValueError):
                await breaker.call(failing_func)

        called = False

        async def tracked():
            nonlocal called
            called = True

        with pytest.raises(CircuitBreakerError) as exc_info:
            await breaker.call(tracked)

        assert not called
        assert exc_info.value.state == CircuitState.OPEN
        assert breaker.stats.rejected_calls == 1

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failure(self, breaker: CircuitBreaker) -> None:
        """Test a stalled call is cut off at the call timeout."""

        async def slow():
            await asyncio.sleep(1.0)

        with pytest.raises(TimeoutError):
            await breaker.call(slow)

        assert breaker.stats.failed_calls == 1

    @pytest.mark.asyncio
    async def test_half_open_recovers(self) -> None:
        """Test a half-open circuit closes after enough successful trial calls."""
        breaker = CircuitBreaker("photos", CircuitBreakerConfig(failure_threshold=1, timeout=0.0))
        with contextlib.suppress(ValueError):
            await breaker.call(failing_func)
        assert breaker.state == CircuitState.OPEN

        await breaker.call(success_func)
        assert breaker.state == CircuitState.HALF_OPEN

        await breaker.call(success_func)
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self) -> None:
        breaker = CircuitBreaker("photos", CircuitBreakerConfig(failure_threshold=1, timeout=0.0))
        with contextlib.suppress(ValueError):
            await breaker.call(failing_func)

        with contextlib.suppress(ValueError):
            await breaker.call(failing_func)

        assert breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_stats_summary(self, breaker: CircuitBreaker) -> None:
        await breaker.call(success_func)

        summary = breaker.get_stats_summary()

        assert summary["component"] == "memory"
        assert summary["state"] == "closed"
        assert summary["successful_calls"] == 1
        assert summary["last_failure_time"] is None


class TestCircuitBreakerRegistry:
    """Test suite for CircuitBreakerRegistry."""

    def test_one_breaker_per_component(self) -> None:
        registry = CircuitBreakerRegistry(CircuitBreakerConfig(failure_threshold=2))

        memory = registry.get("memory")

        assert registry.get("memory") is memory
        assert registry.get("photos") is not memory
        assert memory.config.failure_threshold == 2
        assert set(registry.get_all_stats()) == {"memory", "photos"}
