"""Batch orchestration: submit, optionally follow, then reconcile.

The orchestrator is what a CLI command or terminal view talks to. It hands
back both what the service accepted (``BatchSubmissionResult``) and what
finally happened (the last ``BatchStatusSnapshot`` and how polling ended).
"""

from __future__ import annotations

import inspect
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable

import httpx

from fleetrun.client import HttpTransport, RemoteOperationClient, bulk_run_url
from fleetrun.foundation.config import FleetrunSettings, get_settings
from fleetrun.foundation.errors import ConflictError, Err, Ok, RemoteError, Result
from fleetrun.runtime.observability import get_logger

from .models import BatchRequest, BatchStatusSnapshot, BatchSubmissionResult
from .poller import PollOutcome, StatusPoller
from .submitter import BatchSubmitter

if TYPE_CHECKING:
    from collections.abc import Awaitable

    from fleetrun.runtime.concurrency import CancelToken

OnSnapshot = Callable[[BatchStatusSnapshot], "Awaitable[None] | None"]

log = get_logger("fleetrun.orchestrator")


@dataclass(frozen=True, slots=True)
class BatchRun:
    """Result of one orchestrated batch.

    Attributes:
        submission: Per-item outcomes of the submit call
        final_snapshot: Last status seen while following (None if not followed)
        poll_outcome: How following ended (None if not followed)
        may_still_be_processing: The service may still be working on accepted runs
        snapshots_seen: Number of snapshots delivered while following
        poll_error: The fatal error that ended following, if any
    """

    submission: BatchSubmissionResult
    final_snapshot: BatchStatusSnapshot | None = None
    poll_outcome: PollOutcome | None = None
    may_still_be_processing: bool = False
    snapshots_seen: int = field(default=0, compare=False)
    poll_error: RemoteError | None = field(default=None, compare=False)

    @property
    def batch_id(self) -> str:
        return self.submission.batch_id

    def reconcile(self) -> list[str]:
        """Submission discrepancies plus disagreement between accepted runs and the final status."""
        problems = self.submission.reconcile()
        snap = self.final_snapshot
        if snap is not None and snap.counts.total:
            expected = len(self.submission.successful) + len(self.submission.pending)
            if snap.counts.total != expected:
                problems.append(f"final status reports {snap.counts.total} runs, submission accepted {expected}")
        return problems


class BatchOrchestrator:
    """Sequences submit → (optional) poll → reconciliation.

    Example:
        >>> async with BatchOrchestrator.connect() as orchestrator:
        ...     result = await orchestrator.run(request, follow=True, on_snapshot=print)
        ...     run = result.unwrap()
        ...     if run.may_still_be_processing:
        ...         print(f"batch {run.batch_id} may still be processing")
    """

    __slots__ = ("_client", "_submitter", "_poller", "_max_wait")

    def __init__(
        self,
        client: RemoteOperationClient,
        *,
        submitter: BatchSubmitter | None = None,
        poller: StatusPoller | None = None,
        max_wait: float | None = 90 * 60.0,
    ) -> None:
        self._client = client
        self._submitter = submitter or BatchSubmitter(client)
        self._poller = poller or StatusPoller(client)
        self._max_wait = max_wait

    @classmethod
    @asynccontextmanager
    async def connect(
        cls,
        settings: FleetrunSettings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> AsyncIterator[BatchOrchestrator]:
        """Wire transport, breaker, executor, submitter and poller from settings.

        The HTTP client is closed on exit.
        """
        settings = settings or get_settings()
        http = HttpTransport.from_settings(settings, transport=transport)
        client = RemoteOperationClient.from_settings(http, settings)
        try:
            yield cls(
                client,
                submitter=BatchSubmitter.from_settings(client, settings),
                poller=StatusPoller.from_settings(client, settings),
                max_wait=settings.polling.max_wait,
            )
        finally:
            await http.aclose()

    @property
    def client(self) -> RemoteOperationClient:
        return self._client

    async def run(
        self,
        request: BatchRequest,
        follow: bool = False,
        interval: float | None = None,
        max_wait: float | None = None,
        cancel: CancelToken | None = None,
        on_snapshot: OnSnapshot | None = None,
    ) -> Result[BatchRun, RemoteError]:
        """Submit ``request`` and, if ``follow``, poll until the batch settles.

        Only a failed submission comes back as Err. Once the batch exists the
        result is always an Ok BatchRun carrying the submission: timing out,
        being cancelled or a fatal poll error (``poll_error``, outcome FAILED)
        while following leave ``may_still_be_processing`` set.
        """
        submitted = await self._submitter.submit(request, cancel)
        if submitted.is_err():
            return Err(submitted.unwrap_err())
        submission = submitted.unwrap()
        in_flight = bool(submission.successful or submission.pending)

        if not follow or not in_flight:
            return Ok(BatchRun(submission, may_still_be_processing=in_flight))

        session = self._poller.start(submission.batch_id, interval=interval,
                                     deadline=max_wait if max_wait is not None else self._max_wait, cancel=cancel)
        seen = 0
        poll_error: RemoteError | None = None
        try:
            async with session:
                async for snapshot in session:
                    seen += 1
                    if on_snapshot is not None and inspect.isawaitable(ret := on_snapshot(snapshot)):
                        await ret
        except RemoteError as e:
            log.warning("following batch failed", batch_id=submission.batch_id, error=str(e))
            poll_error = e

        outcome = PollOutcome.FAILED if poll_error is not None else session.outcome or PollOutcome.CANCELLED
        run = BatchRun(
            submission,
            final_snapshot=session.last_snapshot,
            poll_outcome=outcome,
            may_still_be_processing=outcome is not PollOutcome.COMPLETED,
            snapshots_seen=seen,
            poll_error=poll_error,
        )
        if problems := run.reconcile():
            log.warning("batch reconciliation found discrepancies", batch_id=run.batch_id, problems=problems)
        log.info("batch finished", batch_id=run.batch_id, outcome=str(outcome),
                 status=str(run.final_snapshot.status) if run.final_snapshot else None)
        return Ok(run)

    async def status(self, batch_id: str, cancel: CancelToken | None = None) -> Result[BatchStatusSnapshot, RemoteError]:
        """One status fetch, outside any poll session."""
        return await self._poller.fetch(batch_id, cancel)

    async def cancel_batch(self, batch_id: str, cancel: CancelToken | None = None) -> Result[None, RemoteError]:
        """Ask the service to cancel a batch.

        404 → NotFoundError (unknown batch), 409 → ConflictError (already terminal).
        """
        sent = await self._client.call("DELETE", bulk_run_url(batch_id), accept=(200, 202, 204), cancel=cancel)
        if sent.is_err():
            error = sent.unwrap_err()
            if isinstance(error, ConflictError):
                error = ConflictError(f"batch {batch_id} is already in a terminal state",
                                      status_code=error.status_code, details=error.details)
            return Err(error)
        log.info("batch cancelled", batch_id=batch_id)
        return Ok(None)
