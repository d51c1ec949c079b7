"""Tests for the circuit breaker state machine."""

from __future__ import annotations

import asyncio

import pytest

from fleetrun.foundation.errors import (
    CircuitOpenError,
    Err,
    NotFoundError,
    Ok,
    RemoteError,
    Result,
    ServerError,
    is_upstream_fault,
)
from fleetrun.runtime.resilience import CircuitBreaker, CircuitState


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class Op:
    """Counts invocations; returns the scripted result."""

    def __init__(self, result: Result[str, RemoteError]) -> None:
        self.result = result
        self.calls = 0

    async def __call__(self) -> Result[str, RemoteError]:
        self.calls += 1
        return self.result


def failing() -> Op:
    return Op(Err(ServerError("down", status_code=503)))


def succeeding() -> Op:
    return Op(Ok("ok"))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def breaker(clock: FakeClock) -> CircuitBreaker:
    return CircuitBreaker(failure_threshold=2, reset_timeout=0.1, half_open_success_threshold=2, clock=clock)


async def trip(breaker: CircuitBreaker, times: int) -> None:
    for _ in range(times):
        await breaker.call(failing())


# ─────────────────────────────────────────────────────────────────────────────
# Closed → Open
# ─────────────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_opens_after_threshold_and_fails_fast(breaker: CircuitBreaker) -> None:
    """Two consecutive failures open the circuit; the third call never runs."""
    await trip(breaker, 2)
    assert breaker.state is CircuitState.OPEN

    op = succeeding()
    result = await breaker.call(op)
    assert isinstance(result.unwrap_err(), CircuitOpenError)
    assert op.calls == 0


@pytest.mark.asyncio
async def test_stays_closed_below_threshold(breaker: CircuitBreaker) -> None:
    await trip(breaker, 1)
    assert breaker.state is CircuitState.CLOSED
    assert breaker.consecutive_failures == 1


@pytest.mark.asyncio
async def test_success_decays_failures_instead_of_resetting(clock: FakeClock) -> None:
    breaker = CircuitBreaker(failure_threshold=3, clock=clock)
    await trip(breaker, 2)
    await breaker.call(succeeding())
    assert breaker.consecutive_failures == 1
    await trip(breaker, 1)
    assert breaker.state is CircuitState.CLOSED
    await trip(breaker, 1)
    assert breaker.state is CircuitState.OPEN


# ─────────────────────────────────────────────────────────────────────────────
# Open → Half-Open → Closed / Open
# ─────────────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_half_open_trial_after_reset_timeout(breaker: CircuitBreaker, clock: FakeClock) -> None:
    await trip(breaker, 2)
    clock.advance(0.05)
    assert (await breaker.call(succeeding())).is_err()

    clock.advance(0.06)
    assert breaker.state is CircuitState.HALF_OPEN
    op = succeeding()
    assert await breaker.call(op) == Ok("ok")
    assert op.calls == 1
    assert breaker.state is CircuitState.HALF_OPEN


@pytest.mark.asyncio
async def test_half_open_successes_close_the_circuit(breaker: CircuitBreaker, clock: FakeClock) -> None:
    await trip(breaker, 2)
    clock.advance(0.2)
    await breaker.call(succeeding())
    await breaker.call(succeeding())
    assert breaker.state is CircuitState.CLOSED
    assert breaker.consecutive_failures == 0


@pytest.mark.asyncio
async def test_half_open_failure_reopens_immediately(breaker: CircuitBreaker, clock: FakeClock) -> None:
    await trip(breaker, 2)
    clock.advance(0.2)
    await breaker.call(succeeding())
    await breaker.call(failing())
    assert breaker.state is CircuitState.OPEN
    assert breaker.stats["half_open_successes"] == 0

    # reopened at the new failure time: still open a moment later
    clock.advance(0.05)
    op = succeeding()
    assert isinstance((await breaker.call(op)).unwrap_err(), CircuitOpenError)
    assert op.calls == 0


# ─────────────────────────────────────────────────────────────────────────────
# Observability & control
# ─────────────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_state_read_is_pure(breaker: CircuitBreaker, clock: FakeClock) -> None:
    await trip(breaker, 2)
    clock.advance(0.2)
    assert breaker.state is CircuitState.HALF_OPEN
    assert breaker.stats["state"] == "half_open"
    # reading didn't move the clock back or consume a trial call
    clock.advance(-0.2)
    assert breaker.state is CircuitState.OPEN


@pytest.mark.asyncio
async def test_retry_after_counts_down(breaker: CircuitBreaker, clock: FakeClock) -> None:
    assert breaker.retry_after is None
    await trip(breaker, 2)
    assert breaker.retry_after == pytest.approx(0.1)
    clock.advance(0.04)
    assert breaker.retry_after == pytest.approx(0.06)


@pytest.mark.asyncio
async def test_reset_forces_closed(breaker: CircuitBreaker) -> None:
    await trip(breaker, 2)
    breaker.reset()
    assert breaker.state is CircuitState.CLOSED
    assert breaker.stats == {
        "state": "closed", "consecutive_failures": 0, "half_open_successes": 0,
        "last_failure_time": None, "retry_after": None,
    }


@pytest.mark.asyncio
async def test_trips_on_filters_counted_failures(clock: FakeClock) -> None:
    breaker = CircuitBreaker(failure_threshold=1, clock=clock, trips_on=is_upstream_fault)
    result = await breaker.call(Op(Err(NotFoundError("no such batch", status_code=404))))
    assert isinstance(result.unwrap_err(), NotFoundError)
    assert breaker.state is CircuitState.CLOSED

    await breaker.call(failing())
    assert breaker.state is CircuitState.OPEN


@pytest.mark.asyncio
async def test_real_clock_reset_timeout() -> None:
    """Scenario with wall time: threshold 2, 100ms reset timeout."""
    breaker = CircuitBreaker(failure_threshold=2, reset_timeout=0.1)
    await trip(breaker, 2)
    op = succeeding()
    assert isinstance((await breaker.call(op)).unwrap_err(), CircuitOpenError)
    assert op.calls == 0

    await asyncio.sleep(0.12)
    assert (await breaker.call(op)).is_ok()
    assert op.calls == 1


@pytest.mark.asyncio
async def test_shared_breaker_under_concurrent_callers(clock: FakeClock) -> None:
    breaker = CircuitBreaker(failure_threshold=50, clock=clock)

    async def slow_fail() -> Result[str, RemoteError]:
        await asyncio.sleep(0)
        return Err(ServerError("down", status_code=500))

    await asyncio.gather(*(breaker.call(slow_fail) for _ in range(20)))
    assert breaker.consecutive_failures == 20
    assert breaker.state is CircuitState.CLOSED
