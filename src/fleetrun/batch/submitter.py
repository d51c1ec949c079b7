"""Batch submission: one POST carrying every run, decomposed into per-item outcomes."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fleetrun.client import BULK_RUNS, decode_json
from fleetrun.foundation.errors import Err, Ok, RemoteError, RequestValidationError, Result
from fleetrun.runtime.concurrency import CancelToken
from fleetrun.runtime.observability import get_logger, log_context

from .models import BatchRequest, BatchSubmissionResult, BulkSubmitResponse

if TYPE_CHECKING:
    from fleetrun.client import RemoteOperationClient
    from fleetrun.foundation.config import FleetrunSettings

MAX_BATCH_SIZE = 40

# 201 all created, 207 some still being created, 200 created with per-item failures
ACCEPTED_STATUSES = frozenset({200, 201, 207})

log = get_logger("fleetrun.submitter")


class BatchSubmitter:
    """Submits a BatchRequest and accounts for every item.

    Per-item failures inside a successful response are data (``Rejected``
    outcomes), never retried. Anything else non-2xx rejects the whole batch
    with the classified error.

    Args:
        client: Resilient client used for the single POST
        max_size: Largest batch accepted locally (default: 40)
        deadline: Ceiling in seconds for the whole submission, retries included
    """

    __slots__ = ("_client", "_max_size", "_deadline")

    def __init__(self, client: RemoteOperationClient, *, max_size: int = MAX_BATCH_SIZE,
                 deadline: float | None = 10 * 60.0) -> None:
        self._client = client
        self._max_size = max_size
        self._deadline = deadline

    @classmethod
    def from_settings(cls, client: RemoteOperationClient, settings: FleetrunSettings) -> BatchSubmitter:
        return cls(client, max_size=settings.batch.max_size, deadline=settings.http.bulk_submit_deadline)

    def validate(self, request: BatchRequest) -> RequestValidationError | None:
        """Local checks run before any network call."""
        count = len(request.items)
        if count == 0:
            return RequestValidationError("batch must contain at least one run", field="runs")
        if count > self._max_size:
            return RequestValidationError(f"batch has {count} runs; the maximum is {self._max_size}", field="runs")
        return None

    async def submit(self, request: BatchRequest, cancel: CancelToken | None = None) -> Result[BatchSubmissionResult, RemoteError]:
        if (invalid := self.validate(request)) is not None:
            log.warning("batch rejected locally", error=str(invalid))
            return Err(invalid)

        token = (cancel or CancelToken()).child(self._deadline)
        with log_context(repository=request.repository or str(request.repo_id), items=len(request.items)):
            log.info("submitting batch", run_type=str(request.run_type))
            sent = await self._client.call(
                "POST", BULK_RUNS, body=request.to_payload(), accept=ACCEPTED_STATUSES, cancel=token,
            )
            if sent.is_err():
                log.warning("batch submission failed", error=str(sent.unwrap_err()))
                return Err(sent.unwrap_err())

            response = sent.unwrap()
            decoded = decode_json(response, BulkSubmitResponse)
            if decoded.is_err():
                return Err(decoded.unwrap_err())

            result = BatchSubmissionResult.from_response(len(request.items), response.status_code, decoded.unwrap())
            totals = result.totals
            log.info("batch submitted", batch_id=result.batch_id, status=response.status_code,
                     successful=totals.successful, failed=totals.failed, pending=totals.pending)
            if problems := result.reconcile():
                log.warning("batch response inconsistent", batch_id=result.batch_id, problems=problems)
            return Ok(result)
