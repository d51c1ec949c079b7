"""Small task helpers for cooperative cancellation and clean shutdown."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from .cancel import CancelToken

T = TypeVar("T")


async def checkpoint() -> None:
    """Cooperative cancellation checkpoint.

    Yields control to the event loop so pending cancellations are delivered
    between retry attempts and poll ticks.
    """
    await asyncio.sleep(0)


async def cancel_and_wait(task: asyncio.Future[object] | None) -> None:
    """Cancel a background task and wait until it has actually finished.

    Swallows only the task's own CancelledError; if the *caller* is being
    cancelled while waiting, that cancellation still propagates.
    """
    if task is None or task.done():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        if (current := asyncio.current_task()) is not None and current.cancelling():
            raise


async def run_until_cancelled(awaitable: Awaitable[T], token: CancelToken) -> tuple[bool, T | None]:
    """Await ``awaitable`` unless ``token`` fires first.

    Returns ``(True, value)`` when the awaitable finished, ``(False, None)`` when
    the token won; the abandoned work is cancelled and awaited before returning.
    Exceptions raised by the awaitable propagate.
    """
    work = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(token.wait())
    try:
        await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        await cancel_and_wait(waiter)
        if not work.done():
            await cancel_and_wait(work)
    if work.cancelled():
        return False, None
    return True, work.result()
