"""Cancellation signal shared by the retry executor, poller and orchestrator.

A ``CancelToken`` is the Python counterpart of a request context: it can be
cancelled explicitly, carry a deadline, and be waited on. Every suspension
point in the resilience layer sleeps through ``token.sleep()`` so a pending
backoff or poll interval wakes as soon as the token fires instead of
running to completion.

Example:
    >>> token = CancelToken.with_timeout(30.0)
    >>> if not await token.sleep(2.0):
    ...     return Err(token.error())
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable

from fleetrun.foundation.errors import DeadlineExceeded, OperationCancelled


class CancelToken:
    """Cooperative cancellation with an optional monotonic deadline.

    Tokens form a tree: ``child()`` returns a token that fires when its parent
    fires, or on its own (earlier) deadline, without cancelling the parent.
    """

    __slots__ = ("_event", "_deadline", "_reason", "_parent", "_clock")

    def __init__(self, *, deadline: float | None = None, parent: CancelToken | None = None,
                 clock: Callable[[], float] = time.monotonic) -> None:
        self._event = asyncio.Event()
        self._deadline = deadline
        self._reason: str | None = None
        self._parent = parent
        self._clock = clock

    @classmethod
    def with_timeout(cls, seconds: float | None, *, parent: CancelToken | None = None) -> CancelToken:
        """Token whose deadline is ``seconds`` from now (None = no deadline)."""
        return cls(deadline=None if seconds is None else time.monotonic() + seconds, parent=parent)

    def child(self, timeout: float | None = None) -> CancelToken:
        """Derived token: inherits this token's cancellation, adds its own deadline."""
        deadline = None if timeout is None else self._clock() + timeout
        if self.deadline is not None:
            deadline = self.deadline if deadline is None else min(deadline, self.deadline)
        return CancelToken(deadline=deadline, parent=self, clock=self._clock)

    # ─── State ─────────────────────────────────────────────────────────

    @property
    def deadline(self) -> float | None:
        return self._deadline

    @property
    def expired(self) -> bool:
        """Deadline passed (and not explicitly cancelled first)."""
        if self._event.is_set() or (self._parent is not None and self._parent.cancel_requested):
            return False
        return self._deadline is not None and self._clock() >= self._deadline or (
            self._parent is not None and self._parent.expired)

    @property
    def cancel_requested(self) -> bool:
        """Explicit cancel() on this token or an ancestor."""
        return self._event.is_set() or (self._parent is not None and self._parent.cancel_requested)

    @property
    def cancelled(self) -> bool:
        """Fired for any reason: explicit cancel or deadline."""
        return self.cancel_requested or self.expired

    def remaining(self) -> float | None:
        """Seconds until the deadline, or None if there is none."""
        return None if self._deadline is None else max(0.0, self._deadline - self._clock())

    def cancel(self, reason: str | None = None) -> None:
        """Request cancellation. Idempotent."""
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    def error(self) -> OperationCancelled:
        """The error to return once this token has fired."""
        if self.expired:
            return DeadlineExceeded()
        reason, token = self._reason, self._parent
        while reason is None and token is not None:
            reason, token = token._reason, token._parent
        return OperationCancelled(f"operation cancelled: {reason}" if reason else "operation cancelled")

    # ─── Waiting ───────────────────────────────────────────────────────

    async def sleep(self, seconds: float) -> bool:
        """Sleep up to ``seconds``. Returns False if the token fired first.

        The wait is clipped to the deadline, so a deadline that passes mid-sleep
        wakes the caller at the deadline, not after the full delay.
        """
        if self.cancelled:
            return False
        if (left := self.remaining()) is not None and left < seconds:
            await self._wait(left)
            return False
        await self._wait(seconds)
        return not self.cancelled

    async def wait(self) -> None:
        """Block until the token fires, by explicit cancel or by deadline."""
        while not self.cancelled:
            await self._wait(self.remaining())

    async def _wait(self, seconds: float | None) -> None:
        waiters = [asyncio.ensure_future(self._event.wait())]
        token = self._parent
        while token is not None:
            waiters.append(asyncio.ensure_future(token._event.wait()))
            token = token._parent
        try:
            await asyncio.wait(waiters, timeout=None if seconds is None else max(0.0, seconds), return_when=asyncio.FIRST_COMPLETED)
        finally:
            for w in waiters:
                w.cancel()

    def __repr__(self) -> str:
        state = "cancelled" if self.cancel_requested else "expired" if self.expired else "active"
        return f"CancelToken({state}, remaining={self.remaining()})"
