"""Retry executor: invoke a Result-returning operation under a RetryPolicy.

Classification comes from the error itself (``RemoteError.retryable``):

- success returns immediately
- a non-retryable failure returns ``PermanentError(cause)`` at once
- a retryable failure waits ``delay + jitter`` and tries again
- a retryable failure on the last attempt returns ``RetriesExhaustedError``

Waits happen on the CancelToken, so cancellation or a passing deadline
ends the call without another invocation.
"""

from __future__ import annotations

from dataclasses import replace
from typing import TYPE_CHECKING, Callable, TypeVar

from fleetrun.foundation.errors import (
    Err,
    PermanentError,
    RemoteError,
    Result,
    RetriesExhaustedError,
)
from fleetrun.runtime.concurrency import CancelToken, checkpoint, run_until_cancelled
from fleetrun.runtime.observability import get_logger

from .policy import DEFAULT_POLICY, RetryPolicy

if TYPE_CHECKING:
    import random
    from collections.abc import Awaitable

T = TypeVar("T")

Operation = Callable[[], "Awaitable[Result[T, RemoteError]]"]
OnRetry = Callable[[int, RemoteError, float], None]

log = get_logger("fleetrun.retry")


class RetryExecutor:
    """Runs operations with exponential backoff. Holds no per-call state.

    Args:
        policy: Default policy for calls that don't pass one
        rng: Random source for jitter (tests pass a seeded one)

    Example:
        >>> executor = RetryExecutor(RetryPolicy(max_attempts=5))
        >>> result = await executor.execute(lambda: transport.get("/health"), cancel=token)
    """

    __slots__ = ("_policy", "_rng")

    def __init__(self, policy: RetryPolicy | None = None, *, rng: random.Random | None = None) -> None:
        self._policy = policy or DEFAULT_POLICY
        self._rng = rng

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def execute(
        self,
        operation: Operation[T],
        policy: RetryPolicy | None = None,
        cancel: CancelToken | None = None,
        on_retry: OnRetry | None = None,
    ) -> Result[T, RemoteError]:
        """Invoke ``operation`` up to ``policy.max_attempts`` times."""
        policy = policy or self._policy
        backoff = policy.backoff if self._rng is None else replace(policy.backoff, rng=self._rng)
        token = cancel or CancelToken()
        delay = policy.initial_delay

        for attempt in range(1, policy.max_attempts + 1):
            if attempt > 1:
                await checkpoint()
                if token.cancelled:
                    return Err(token.error())

            result = await _invoke(operation, token)
            if result is None:
                return Err(token.error())
            if result.is_ok():
                if attempt > 1:
                    log.debug("retry succeeded", attempt=attempt)
                return result

            error = result.unwrap_err()
            if not error.retryable:
                log.debug("permanent failure", attempt=attempt, code=str(error.code), error=str(error))
                return Err(PermanentError(error))
            if attempt == policy.max_attempts:
                log.debug("retries exhausted", attempts=attempt, code=str(error.code), error=str(error))
                return Err(RetriesExhaustedError(attempt, error))

            wait = backoff.jittered(delay)
            log.debug("retrying", attempt=attempt, max_attempts=policy.max_attempts,
                      delay=round(wait, 3), code=str(error.code), error=str(error))
            if on_retry is not None:
                on_retry(attempt, error, wait)
            if not await token.sleep(wait):
                return Err(token.error())
            delay = backoff.next_delay(delay)

        raise AssertionError("unreachable: max_attempts >= 1")  # pragma: no cover


async def _invoke(operation: Operation[T], token: CancelToken) -> Result[T, RemoteError] | None:
    """Call once, abandoning the call if the token fires (None).

    A RemoteError raised instead of returned is treated the same.
    """
    if token.cancelled:
        return None
    try:
        finished, result = await run_until_cancelled(operation(), token)
    except RemoteError as e:
        return Err(e)
    return result if finished else None
