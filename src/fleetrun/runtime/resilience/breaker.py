"""Circuit breaker guarding calls to a possibly unhealthy upstream.

State Machine:
    CLOSED → failure_threshold consecutive failures → OPEN
    CLOSED → success → CLOSED (failure count decays by one)
    OPEN → call before reset_timeout → rejected, operation never invoked
    OPEN → call after reset_timeout → HALF_OPEN, operation invoked
    HALF_OPEN → half_open_success_threshold successes → CLOSED
    HALF_OPEN → failure → OPEN

One breaker can be shared by concurrent callers: every read and transition
happens under a single lock, and the wrapped operation runs outside it.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Callable, TypedDict, TypeVar

from fleetrun.foundation.errors import CircuitOpenError, Err, RemoteError, Result
from fleetrun.runtime.observability import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable

    from fleetrun.foundation.config import BreakerSettings

T = TypeVar("T")

log = get_logger("fleetrun.breaker")


class CircuitState(StrEnum):
    """Circuit breaker states."""

    CLOSED = "closed"        # Normal operation
    OPEN = "open"            # Failing fast
    HALF_OPEN = "half_open"  # Testing recovery


class BreakerStats(TypedDict):
    state: str
    consecutive_failures: int
    half_open_successes: int
    last_failure_time: float | None
    retry_after: float | None


def _trips_always(_: RemoteError) -> bool:
    return True


@dataclass(slots=True)
class CircuitBreaker:
    """Three-state breaker around async Result-returning operations.

    Args:
        failure_threshold: Consecutive failures before opening (default: 5)
        reset_timeout: Seconds after the last failure before a half-open trial call (default: 30)
        half_open_success_threshold: Half-open successes needed to close (default: 3)
        clock: Monotonic time source, injectable for tests
        trips_on: Which failures count against the breaker (default: all). Failures it
            rejects pass through without changing state.

    Example:
        >>> breaker = CircuitBreaker(failure_threshold=2, reset_timeout=0.1)
        >>> result = await breaker.call(lambda: client.fetch_status("batch-123"))
        >>> breaker.state
        <CircuitState.CLOSED: 'closed'>
    """

    failure_threshold: int = 5
    reset_timeout: float = 30.0
    half_open_success_threshold: int = 3
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)
    trips_on: Callable[[RemoteError], bool] = field(default=_trips_always, repr=False)

    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failures: int = field(default=0, init=False)
    _half_open_successes: int = field(default=0, init=False)
    _last_failure: float | None = field(default=None, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    @classmethod
    def from_settings(cls, settings: BreakerSettings, *,
                      trips_on: Callable[[RemoteError], bool] = _trips_always) -> CircuitBreaker:
        return cls(
            failure_threshold=settings.failure_threshold,
            reset_timeout=settings.reset_timeout,
            half_open_success_threshold=settings.half_open_successes,
            trips_on=trips_on,
        )

    # ─────────────────────────────────────────────────────────────────
    # Call path
    # ─────────────────────────────────────────────────────────────────

    async def call(self, operation: Callable[[], Awaitable[Result[T, RemoteError]]]) -> Result[T, RemoteError]:
        """Invoke ``operation`` unless the circuit is open."""
        with self._lock:
            if (state := self._observe()) is CircuitState.OPEN:
                return Err(CircuitOpenError(failures=self._failures, retry_after=self._retry_after()))
            if state is not self._state:
                self._transition(state)
                self._half_open_successes = 0

        result = await operation()

        with self._lock:
            if result.is_ok():
                self._on_success()
            elif self.trips_on(result.unwrap_err()):
                self._on_failure()
        return result

    def _on_success(self) -> None:
        if self._state is CircuitState.HALF_OPEN:
            self._half_open_successes += 1
            if self._half_open_successes >= self.half_open_success_threshold:
                self._transition(CircuitState.CLOSED)
                self._failures = self._half_open_successes = 0
        elif self._failures > 0:
            self._failures -= 1

    def _on_failure(self) -> None:
        self._last_failure = self.clock()
        if self._state is CircuitState.HALF_OPEN:
            self._half_open_successes = 0
            self._transition(CircuitState.OPEN)
            return
        self._failures += 1
        if self._state is CircuitState.CLOSED and self._failures >= self.failure_threshold:
            self._transition(CircuitState.OPEN)

    def _transition(self, to: CircuitState) -> None:
        log.info("circuit state change", from_state=str(self._state), to_state=str(to), failures=self._failures)
        self._state = to

    # ─────────────────────────────────────────────────────────────────
    # Pure reads (caller holds the lock)
    # ─────────────────────────────────────────────────────────────────

    def _observe(self) -> CircuitState:
        """State as time has made it, without mutating."""
        if self._state is CircuitState.OPEN and self._retry_after() <= 0:
            return CircuitState.HALF_OPEN
        return self._state

    def _retry_after(self) -> float:
        if self._last_failure is None:
            return 0.0
        return max(0.0, self.reset_timeout - (self.clock() - self._last_failure))

    # ─────────────────────────────────────────────────────────────────
    # Public API
    # ─────────────────────────────────────────────────────────────────

    @property
    def state(self) -> CircuitState:
        """Current state. OPEN reads as HALF_OPEN once reset_timeout has elapsed."""
        with self._lock:
            return self._observe()

    @property
    def consecutive_failures(self) -> int:
        with self._lock:
            return self._failures

    @property
    def is_open(self) -> bool:
        return self.state is CircuitState.OPEN

    @property
    def retry_after(self) -> float | None:
        """Seconds until a half-open trial call is allowed, or None if not open."""
        with self._lock:
            return self._retry_after() if self._observe() is CircuitState.OPEN else None

    @property
    def stats(self) -> BreakerStats:
        with self._lock:
            state = self._observe()
            return {
                "state": str(state),
                "consecutive_failures": self._failures,
                "half_open_successes": self._half_open_successes,
                "last_failure_time": self._last_failure,
                "retry_after": self._retry_after() if state is CircuitState.OPEN else None,
            }

    def reset(self) -> None:
        """Force CLOSED with zero counters. Never called automatically."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failures = self._half_open_successes = 0
            self._last_failure = None
