"""Circuit breakers guarding per-turn enrichment.

Memory and photo enrichment are best-effort: a collaborator that keeps failing
or stalling is cut off for a while instead of slowing every turn down. Each
call is bounded by ``call_timeout``; after ``failure_threshold`` consecutive
failures the circuit opens and calls are rejected until ``timeout`` seconds
have passed, then a half-open trial call decides whether to close it again.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from carecore.config import EnrichmentSettings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Calls pass through
    OPEN = "open"  # Calls are rejected
    HALF_OPEN = "half_open"  # Probing for recovery


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""

    failure_threshold: int = 5
    success_threshold: int = 2
    timeout: float = 60.0  # Seconds open before half-open
    call_timeout: float = 2.0  # Max seconds per call

    @classmethod
    def from_settings(cls, settings: EnrichmentSettings) -> CircuitBreakerConfig:
        return cls(
            failure_threshold=settings.failure_threshold,
            timeout=settings.reset_timeout_seconds,
            call_timeout=settings.timeout_seconds,
        )


@dataclass
class CircuitBreakerStats:
    """Statistics for circuit breaker."""

    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    rejected_calls: int = 0
    last_failure_time: datetime | None = None
    last_state_change: datetime = field(default_factory=lambda: datetime.now(UTC))
    consecutive_failures: int = 0
    consecutive_successes: int = 0


class CircuitBreakerError(Exception):
    """Raised when an open circuit rejects a call."""

    def __init__(self, message: str, state: CircuitState) -> None:
        super().__init__(message)
        self.state = state


class CircuitBreaker:
    """Async circuit breaker with a per-call timeout."""

    def __init__(self, component: str, config: CircuitBreakerConfig | None = None) -> None:
        """Initialize circuit breaker.

        Args:
            component: Name of the guarded component (e.g. "memory", "photos")
            config: Circuit breaker configuration
        """
        self.component = component
        self.config = config or CircuitBreakerConfig()
        self._state = CircuitState.CLOSED
        self._stats = CircuitBreakerStats()
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def stats(self) -> CircuitBreakerStats:
        return self._stats

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Run a coroutine function under circuit breaker protection.

        Args:
            func: Coroutine function to call
            *args: Positional arguments
            **kwargs: Keyword arguments

        Returns:
            The function's result

        Raises:
            CircuitBreakerError: If the circuit is open
            TimeoutError: If the call exceeds ``call_timeout``
            Exception: Whatever the function raised
        """
        await self._admit()

        try:
            result = await asyncio.wait_for(func(*args, **kwargs), timeout=self.config.call_timeout)
        except TimeoutError:
            await self._record_failure()
            logger.warning(f"⏱️ '{self.component}' timed out after {self.config.call_timeout}s")
            raise
        except Exception as e:
            await self._record_failure()
            logger.error(f"❌ '{self.component}' failed: {e.__class__.__name__}: {e}")
            raise

        await self._record_success()
        return result

    async def _admit(self) -> None:
        async with self._lock:
            if self._state != CircuitState.OPEN:
                return
            if self._reset_due():
                logger.info(f"⚡ Circuit '{self.component}' entering HALF_OPEN state")
                self._transition(CircuitState.HALF_OPEN)
                self._stats.consecutive_successes = 0
                return
            self._stats.rejected_calls += 1
            raise CircuitBreakerError(f"Circuit '{self.component}' is OPEN - rejecting call", self._state)

    def _reset_due(self) -> bool:
        if self._stats.last_failure_time is None:
            return True
        elapsed = (datetime.now(UTC) - self._stats.last_failure_time).total_seconds()
        return elapsed >= self.config.timeout

    def _transition(self, state: CircuitState) -> None:
        self._state = state
        self._stats.last_state_change = datetime.now(UTC)

    async def _record_success(self) -> None:
        async with self._lock:
            self._stats.total_calls += 1
            self._stats.successful_calls += 1
            self._stats.consecutive_failures = 0

            if self._state == CircuitState.HALF_OPEN:
                self._stats.consecutive_successes += 1
                if self._stats.consecutive_successes >= self.config.success_threshold:
                    logger.info(f"✅ Circuit '{self.component}' CLOSED (recovered)")
                    self._transition(CircuitState.CLOSED)

    async def _record_failure(self) -> None:
        async with self._lock:
            self._stats.total_calls += 1
            self._stats.failed_calls += 1
            self._stats.consecutive_failures += 1
            self._stats.consecutive_successes = 0
            self._stats.last_failure_time = datetime.now(UTC)

            if self._state == CircuitState.HALF_OPEN:
                logger.warning(f"⚠️ Circuit '{self.component}' HALF_OPEN trial call failed - back to OPEN")
                self._transition(CircuitState.OPEN)
            elif self._stats.consecutive_failures >= self.config.failure_threshold:
                logger.error(
                    f"🔴 Circuit '{self.component}' OPEN "
                    f"({self._stats.consecutive_failures} consecutive failures)"
                )
                self._transition(CircuitState.OPEN)

    def get_stats_summary(self) -> dict[str, Any]:
        """Summary of circuit statistics."""
        return {
            "component": self.component,
            "state": self._state.value,
            "total_calls": self._stats.total_calls,
            "successful_calls": self._stats.successful_calls,
            "failed_calls": self._stats.failed_calls,
            "rejected_calls": self._stats.rejected_calls,
            "consecutive_failures": self._stats.consecutive_failures,
            "last_failure_time": (
                self._stats.last_failure_time.isoformat() if self._stats.last_failure_time else None
            ),
            "last_state_change": self._stats.last_state_change.isoformat(),
        }


class CircuitBreakerRegistry:
    """One breaker per enrichment component, sharing a configuration."""

    def __init__(self, config: CircuitBreakerConfig | None = None) -> None:
        self.config = config or CircuitBreakerConfig()
        self._breakers: dict[str, CircuitBreaker] = {}

    def get(self, component: str) -> CircuitBreaker:
        """Get or create the breaker for a component."""
        if component not in self._breakers:
            self._breakers[component] = CircuitBreaker(component, self.config)
            logger.debug(f"Created circuit breaker for '{component}'")
        return self._breakers[component]

    def get_all_stats(self) -> dict[str, dict[str, Any]]:
        return {name: breaker.get_stats_summary() for name, breaker in self._breakers.items()}
