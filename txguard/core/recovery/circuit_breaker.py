"""
Circuit Breaker

Stops calling a failing backend for a cool-down period.

States:
- CLOSED: calls pass through, consecutive failures are counted
- OPEN: calls are rejected with CircuitOpenError without being invoked
- HALF_OPEN: exactly one probe call is let through to test recovery
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, Optional, TypeVar

from .errors import CircuitOpenError

if TYPE_CHECKING:
    from txguard.config import Settings

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"       # Normal operation
    OPEN = "open"           # Failing, reject requests
    HALF_OPEN = "half_open"  # Testing recovery


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""

    failure_threshold: int = 5        # Consecutive failures before opening
    open_timeout_seconds: float = 30.0  # Time before a probe is allowed

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.open_timeout_seconds < 0:
            raise ValueError("open_timeout_seconds must be >= 0")

    @classmethod
    def from_settings(cls, settings: Optional["Settings"] = None) -> "CircuitBreakerConfig":
        if settings is None:
            from txguard.config import settings
        return cls(
            failure_threshold=settings.circuit_failure_threshold,
            open_timeout_seconds=settings.circuit_open_timeout_seconds,
        )


@dataclass(frozen=True)
class CircuitBreakerState:
    """Point-in-time view of a breaker."""

    name: str
    state: CircuitState
    failure_count: int
    last_failure_time: Optional[float]
    threshold: int
    open_timeout_seconds: float


class CircuitBreaker:
    """
    Guards an async submission function.

    Every state read-modify-write happens under an asyncio.Lock, so
    concurrent callers can neither race two half-open probes nor lose a
    failure increment. The wrapped call itself runs outside the lock.
    """

    def __init__(
        self,
        name: str = "default",
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[logging.Logger] = None,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self.logger = logger or logging.getLogger(__name__)
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None
        self._probe_in_flight = False
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def last_failure_time(self) -> Optional[float]:
        return self._last_failure_time

    @property
    def is_closed(self) -> bool:
        return self._state == CircuitState.CLOSED

    @property
    def is_open(self) -> bool:
        return self._state == CircuitState.OPEN

    def snapshot(self) -> CircuitBreakerState:
        return CircuitBreakerState(
            name=self.name,
            state=self._state,
            failure_count=self._failure_count,
            last_failure_time=self._last_failure_time,
            threshold=self.config.failure_threshold,
            open_timeout_seconds=self.config.open_timeout_seconds,
        )

    def seconds_until_probe(self) -> float:
        """Remaining cool-down; 0 when a probe would be admitted now."""
        if self._state != CircuitState.OPEN or self._last_failure_time is None:
            return 0.0
        elapsed = self._clock() - self._last_failure_time
        return max(0.0, self.config.open_timeout_seconds - elapsed)

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``operation`` through the breaker.

        Raises:
            CircuitOpenError: if the breaker is open or a probe is already
                in flight. ``operation`` is not invoked in that case.
        """
        is_probe = await self._admit()

        try:
            result = await operation()
        except asyncio.CancelledError:
            if is_probe:
                async with self._lock:
                    self._probe_in_flight = False
            raise
        except Exception:
            await self._record_failure(is_probe)
            raise

        await self._record_success(is_probe)
        return result

    def reset(self) -> None:
        """Manually reset the circuit breaker."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time = None
        self._probe_in_flight = False
        self.logger.info(f"Circuit breaker '{self.name}' manually reset")

    async def _admit(self) -> bool:
        """Admit a call or raise. Returns True when the call is the half-open probe."""
        async with self._lock:
            if self._state == CircuitState.OPEN:
                remaining = self.seconds_until_probe()
                if remaining > 0:
                    raise CircuitOpenError(self.name, retry_after=remaining)
                self._transition_to_half_open()

            if self._state == CircuitState.HALF_OPEN:
                if self._probe_in_flight:
                    raise CircuitOpenError(self.name)
                self._probe_in_flight = True
                return True

            return False

    async def _record_success(self, is_probe: bool) -> None:
        async with self._lock:
            if is_probe:
                self._probe_in_flight = False
                self._transition_to_closed()
            elif self._state == CircuitState.CLOSED:
                self._failure_count = 0

    async def _record_failure(self, is_probe: bool) -> None:
        async with self._lock:
            self._failure_count += 1
            self._last_failure_time = self._clock()

            if is_probe:
                self._probe_in_flight = False
                self._transition_to_open("probe failed")
            elif (
                self._state == CircuitState.CLOSED
                and self._failure_count >= self.config.failure_threshold
            ):
                self._transition_to_open(f"{self._failure_count} consecutive failures")

    def _transition_to_open(self, reason: str) -> None:
        self._state = CircuitState.OPEN
        self.logger.warning(f"Circuit breaker '{self.name}' opened: {reason}")

    def _transition_to_half_open(self) -> None:
        self._state = CircuitState.HALF_OPEN
        self.logger.info(f"Circuit breaker '{self.name}' entering half-open state")

    def _transition_to_closed(self) -> None:
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self.logger.info(f"Circuit breaker '{self.name}' closed, service recovered")
