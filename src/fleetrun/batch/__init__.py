"""Batch flow: data model, submitter, status poller and orchestrator."""

from .models import (
    Accepted,
    BatchCounts,
    BatchOptions,
    BatchRequest,
    BatchStatus,
    BatchStatusSnapshot,
    BatchSubmissionResult,
    BatchTotals,
    BulkSubmitResponse,
    ItemOutcome,
    Pending,
    Rejected,
    RunItem,
    RunStatusEntry,
    RunType,
    content_hash,
)
from .orchestrator import BatchOrchestrator, BatchRun
from .poller import PollOutcome, PollSession, StatusPoller, is_fatal, is_transient
from .submitter import ACCEPTED_STATUSES, MAX_BATCH_SIZE, BatchSubmitter

__all__ = [
    # Models
    "RunType", "RunItem", "content_hash", "BatchOptions", "BatchRequest",
    "Accepted", "Rejected", "Pending", "ItemOutcome", "BatchTotals", "BatchSubmissionResult", "BulkSubmitResponse",
    "BatchStatus", "RunStatusEntry", "BatchCounts", "BatchStatusSnapshot",
    # Submission
    "BatchSubmitter", "MAX_BATCH_SIZE", "ACCEPTED_STATUSES",
    # Polling
    "StatusPoller", "PollSession", "PollOutcome", "is_fatal", "is_transient",
    # Orchestration
    "BatchOrchestrator", "BatchRun",
]
