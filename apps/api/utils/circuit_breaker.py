"""Circuit breaker guarding the embedding provider.

When the embedding backend keeps failing, every search would otherwise pay the
full provider timeout before falling back to keyword matching. The breaker
remembers recent failures so those calls can skip straight to Tier 2.

States:
- CLOSED: Normal operation, provider calls pass through
- OPEN: Provider is considered down, calls fail fast
- HALF_OPEN: Recovery window, a few trial calls are allowed

Usage:
    from utils.circuit_breaker import get_circuit_breaker, CircuitBreakerOpen

    breaker = get_circuit_breaker("embeddings", failure_threshold=3)

    async with breaker:
        vector = await client.embeddings.create(...)
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Set, Type

from utils.logging import get_logger

logger = get_logger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpen(Exception):
    """Raised when the circuit breaker is open and rejecting calls."""

    def __init__(self, name: str, time_remaining: float):
        self.name = name
        self.time_remaining = time_remaining
        super().__init__(
            f"Circuit breaker '{name}' is open. Retry in {time_remaining:.1f}s"
        )


@dataclass
class CircuitBreakerStats:
    """Point-in-time view of a breaker, served by /health/circuits."""

    name: str
    state: str
    failure_count: int
    success_count: int
    time_until_retry: float
    total_failures: int
    total_successes: int
    total_rejections: int


@dataclass
class CircuitBreaker:
    """Async circuit breaker.

    Attributes:
        name: Identifier used in logs and stats
        failure_threshold: Consecutive failures before opening
        recovery_timeout: Seconds to stay open before a trial call
        success_threshold: Trial successes needed to close again
        exceptions: Exception types that count as failures (None = all)
    """

    name: str
    failure_threshold: int = 5
    recovery_timeout: float = 30.0
    success_threshold: int = 2
    exceptions: Optional[Set[Type[Exception]]] = None

    _state: CircuitState = field(default=CircuitState.CLOSED, init=False, repr=False)
    _failure_count: int = field(default=0, init=False, repr=False)
    _success_count: int = field(default=0, init=False, repr=False)
    _opened_at: Optional[float] = field(default=None, init=False, repr=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)

    _total_failures: int = field(default=0, init=False, repr=False)
    _total_successes: int = field(default=0, init=False, repr=False)
    _total_rejections: int = field(default=0, init=False, repr=False)

    @property
    def state(self) -> CircuitState:
        """Current state, moving OPEN to HALF_OPEN once the timeout elapsed."""
        if self._state == CircuitState.OPEN and self._opened_at is not None:
            elapsed = time.monotonic() - self._opened_at
            if elapsed >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
                self._success_count = 0
                logger.info(
                    f"Circuit breaker '{self.name}' half-open after {elapsed:.1f}s"
                )
        return self._state

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    @property
    def time_until_retry(self) -> float:
        if self._state != CircuitState.OPEN or self._opened_at is None:
            return 0.0
        remaining = self.recovery_timeout - (time.monotonic() - self._opened_at)
        return max(0.0, remaining)

    def _counts_as_failure(self, exc: BaseException) -> bool:
        if self.exceptions is None:
            return True
        return any(isinstance(exc, exc_type) for exc_type in self.exceptions)

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = time.monotonic()
        self._success_count = 0

    async def record_success(self) -> None:
        async with self._lock:
            self._total_successes += 1
            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.success_threshold:
                    self._state = CircuitState.CLOSED
                    self._failure_count = 0
                    self._success_count = 0
                    logger.info(f"Circuit breaker '{self.name}' closed, provider recovered")
            else:
                self._failure_count = 0

    async def record_failure(self, exc: BaseException) -> None:
        async with self._lock:
            if not self._counts_as_failure(exc):
                return

            self._total_failures += 1
            self._failure_count += 1

            if self._state == CircuitState.HALF_OPEN:
                self._open()
                logger.warning(
                    f"Circuit breaker '{self.name}' reopened during recovery: "
                    f"{type(exc).__name__}: {exc}"
                )
            elif (
                self._state == CircuitState.CLOSED
                and self._failure_count >= self.failure_threshold
            ):
                self._open()
                logger.warning(
                    f"Circuit breaker '{self.name}' opened after "
                    f"{self._failure_count} consecutive failures"
                )

    def check(self) -> None:
        """Raise CircuitBreakerOpen if calls are currently rejected."""
        if self.state == CircuitState.OPEN:
            self._total_rejections += 1
            raise CircuitBreakerOpen(self.name, self.time_until_retry)

    def get_stats(self) -> CircuitBreakerStats:
        return CircuitBreakerStats(
            name=self.name,
            state=self.state.value,
            failure_count=self._failure_count,
            success_count=self._success_count,
            time_until_retry=round(self.time_until_retry, 1),
            total_failures=self._total_failures,
            total_successes=self._total_successes,
            total_rejections=self._total_rejections,
        )

    def reset(self) -> None:
        """Force the breaker closed."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._opened_at = None
        logger.info(f"Circuit breaker '{self.name}' manually reset")

    async def __aenter__(self) -> "CircuitBreaker":
        self.check()
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Any,
    ) -> bool:
        if exc_val is None:
            await self.record_success()
        else:
            await self.record_failure(exc_val)
        return False


_circuit_breakers: dict[str, CircuitBreaker] = {}


def get_circuit_breaker(
    name: str,
    failure_threshold: int = 5,
    recovery_timeout: float = 30.0,
    success_threshold: int = 2,
    exceptions: Optional[Set[Type[Exception]]] = None,
) -> CircuitBreaker:
    """Get or create a named circuit breaker (singleton per name)."""
    if name not in _circuit_breakers:
        _circuit_breakers[name] = CircuitBreaker(
            name=name,
            failure_threshold=failure_threshold,
            recovery_timeout=recovery_timeout,
            success_threshold=success_threshold,
            exceptions=exceptions,
        )
        logger.debug(f"Created circuit breaker '{name}'")
    return _circuit_breakers[name]


def get_circuit_breaker_stats() -> list[CircuitBreakerStats]:
    """Get statistics for all circuit breakers."""
    return [cb.get_stats() for cb in _circuit_breakers.values()]


def reset_circuit_breakers() -> None:
    """Drop every registered breaker. Test isolation helper."""
    _circuit_breakers.clear()
