"""Status polling: a background producer streaming batch snapshots to a consumer.

``StatusPoller.start()`` returns a ``PollSession``, an async iterator and
async context manager. A producer task fetches the batch status once per
tick (first fetch immediately) and hands each snapshot over a bounded
queue. The session ends exactly once:

    terminal status (emitted first)  → PollOutcome.COMPLETED
    deadline elapsed                 → PollOutcome.TIMED_OUT
    cancel() / token cancelled       → PollOutcome.CANCELLED
    fatal error (raised to consumer) → PollOutcome.FAILED

Any tick failure other than a fatal one (batch not found, auth, quota) is
logged and retried on the next tick, including undecodable bodies and
unexpected statuses; the interval is the backoff.

Example:
    >>> async with poller.start("batch-123", interval=2.0, deadline=600) as session:
    ...     async for snapshot in session:
    ...         print(snapshot.status, snapshot.counts.completed)
    >>> session.outcome
    <PollOutcome.COMPLETED: 'completed'>
"""

from __future__ import annotations

import asyncio
import contextlib
from enum import StrEnum
from typing import TYPE_CHECKING, Self

from fleetrun.client import bulk_run_url, decode_json
from fleetrun.foundation.errors import (
    AuthError,
    NotFoundError,
    OperationCancelled,
    QuotaError,
    RemoteError,
    Result,
)
from fleetrun.runtime.concurrency import CancelToken, cancel_and_wait
from fleetrun.runtime.observability import get_logger
from fleetrun.runtime.retry import SINGLE_ATTEMPT

from .models import BatchStatusSnapshot

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from types import TracebackType

    from fleetrun.client import RemoteOperationClient
    from fleetrun.foundation.config import FleetrunSettings

    Fetch = Callable[[CancelToken], Awaitable[Result[BatchStatusSnapshot, RemoteError]]]

log = get_logger("fleetrun.poller")


class PollOutcome(StrEnum):
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"
    FAILED = "failed"


def is_fatal(error: RemoteError) -> bool:
    """The batch lookup itself is unusable: batch gone, credentials rejected, quota reached."""
    return isinstance(error, NotFoundError | AuthError | QuotaError)


def is_transient(error: RemoteError) -> bool:
    """A tick failure retried on the next tick (upstream faults, open circuit, garbled bodies)."""
    return not is_fatal(error)


class _Closed:
    """Queue marker: the producer has finished."""

    __slots__ = ()


_CLOSED = _Closed()


class PollSession:
    """One batch being followed. Iterate for snapshots; the outcome is set once it ends."""

    __slots__ = ("batch_id", "interval", "_fetch", "_token", "_queue", "_task",
                 "_outcome", "_error", "_last", "_closed", "_log")

    def __init__(self, batch_id: str, fetch: Fetch, *, interval: float, token: CancelToken,
                 queue_size: int = 1) -> None:
        self.batch_id = batch_id
        self.interval = interval
        self._fetch = fetch
        self._token = token
        self._queue: asyncio.Queue[BatchStatusSnapshot | _Closed] = asyncio.Queue(maxsize=queue_size)
        self._task: asyncio.Task[None] | None = None
        self._outcome: PollOutcome | None = None
        self._error: RemoteError | None = None
        self._last: BatchStatusSnapshot | None = None
        self._closed = False
        self._log = log.bind_batch(batch_id)

    def _start(self) -> None:
        self._task = asyncio.create_task(self._produce(), name=f"fleetrun-poll-{self.batch_id}")

    # ─── Producer ──────────────────────────────────────────────────────

    async def _produce(self) -> None:
        token = self._token
        tick = 0
        try:
            while not token.cancelled:
                tick += 1
                result = await self._fetch(token)
                if token.cancelled:
                    break
                if result.is_ok():
                    snapshot = result.unwrap()
                    self._log.debug("tick", tick=tick, status=str(snapshot.status),
                                    completed=snapshot.counts.completed, failed=snapshot.counts.failed)
                    await self._queue.put(snapshot)
                    if snapshot.is_terminal:
                        self._finish(PollOutcome.COMPLETED)
                        return
                else:
                    error = result.unwrap_err()
                    if isinstance(error, OperationCancelled):
                        break
                    if is_fatal(error):
                        self._log.warning("poll failed", tick=tick, error=str(error), code=str(error.code))
                        self._error = error
                        self._finish(PollOutcome.FAILED)
                        return
                    self._log.info("tick failed; retrying next tick", tick=tick, error=str(error))
                if not await token.sleep(self.interval):
                    break
            self._finish(PollOutcome.TIMED_OUT if token.expired else PollOutcome.CANCELLED)
        finally:
            if self._outcome is None:
                self._finish(PollOutcome.CANCELLED)
            # leave room for the marker without blocking: the consumer stops at the marker
            with contextlib.suppress(asyncio.QueueFull):
                self._queue.put_nowait(_CLOSED)

    def _finish(self, outcome: PollOutcome) -> None:
        if self._outcome is None:
            self._outcome = outcome
            self._log.info("polling finished", outcome=str(outcome))

    # ─── Consumer ──────────────────────────────────────────────────────

    def __aiter__(self) -> Self:
        return self

    async def __anext__(self) -> BatchStatusSnapshot:
        while not self._closed:
            item = await self._next_item()
            if isinstance(item, BatchStatusSnapshot):
                self._last = item
                return item
            await self.aclose()
            if self._error is not None:
                raise self._error
        raise StopAsyncIteration

    async def _next_item(self) -> BatchStatusSnapshot | _Closed:
        """Next queued item; the marker if the producer ended with the queue full."""
        if not self._queue.empty():
            return self._queue.get_nowait()
        if self._task is None or self._task.done():
            return _CLOSED
        getter = asyncio.ensure_future(self._queue.get())
        try:
            await asyncio.wait({getter, self._task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if not getter.done():
                await cancel_and_wait(getter)
        if getter.cancelled():
            return self._queue.get_nowait() if not self._queue.empty() else _CLOSED
        return getter.result()

    # ─── Control ───────────────────────────────────────────────────────

    def cancel(self, reason: str = "poll cancelled") -> None:
        """Stop polling; iteration ends after already-queued snapshots."""
        self._token.cancel(reason)

    async def aclose(self) -> None:
        """Stop the producer and close the stream. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        if self._task is not None and not self._task.done():
            self._token.cancel("session closed")
            await cancel_and_wait(self._task)
        self._finish(PollOutcome.CANCELLED)

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, exc_type: type[BaseException] | None, exc_val: BaseException | None,
                        exc_tb: TracebackType | None) -> None:
        await self.aclose()

    # ─── State ─────────────────────────────────────────────────────────

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def outcome(self) -> PollOutcome | None:
        return self._outcome

    @property
    def timed_out(self) -> bool:
        return self._outcome is PollOutcome.TIMED_OUT

    @property
    def error(self) -> RemoteError | None:
        return self._error

    @property
    def last_snapshot(self) -> BatchStatusSnapshot | None:
        return self._last

    async def drain(self) -> BatchStatusSnapshot | None:
        """Consume the stream to the end; returns the last snapshot seen."""
        async for _ in self:
            pass
        return self._last


class StatusPoller:
    """Starts poll sessions against ``GET /api/v1/runs/bulk/{batch_id}``.

    Each tick is a single-attempt call through the client, so the breaker
    still sees every failure but the executor never sleeps between ticks.
    """

    __slots__ = ("_client", "_interval", "_queue_size")

    def __init__(self, client: RemoteOperationClient, *, interval: float = 2.0, queue_size: int = 1) -> None:
        self._client = client
        self._interval = interval
        self._queue_size = queue_size

    @classmethod
    def from_settings(cls, client: RemoteOperationClient, settings: FleetrunSettings) -> StatusPoller:
        return cls(client, interval=settings.polling.interval, queue_size=settings.polling.queue_size)

    async def fetch(self, batch_id: str, cancel: CancelToken | None = None) -> Result[BatchStatusSnapshot, RemoteError]:
        """One status fetch."""
        sent = await self._client.call("GET", bulk_run_url(batch_id), policy=SINGLE_ATTEMPT, cancel=cancel)
        return sent.flat_map(lambda response: decode_json(response, BatchStatusSnapshot))

    def start(
        self,
        batch_id: str,
        interval: float | None = None,
        deadline: float | None = None,
        cancel: CancelToken | None = None,
    ) -> PollSession:
        """Begin polling in the background. Must be called from a running event loop.

        Args:
            batch_id: Batch to follow
            interval: Seconds between fetches (default from construction)
            deadline: Seconds from now after which the session times out
            cancel: Parent token; cancelling it ends the session
        """
        token = cancel.child(deadline) if cancel is not None else CancelToken.with_timeout(deadline)
        session = PollSession(
            batch_id,
            lambda t: self.fetch(batch_id, t),
            interval=interval if interval is not None else self._interval,
            token=token,
            queue_size=self._queue_size,
        )
        session._start()
        log.debug("polling started", batch_id=batch_id, interval=session.interval, deadline=deadline)
        return session
