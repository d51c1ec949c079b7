"""fleetrun - submit and follow batches of remote coding-agent runs.

Core flow: BatchOrchestrator → BatchSubmitter / StatusPoller →
RemoteOperationClient (CircuitBreaker ∘ RetryExecutor) → HttpTransport.

Quick Start:
    >>> from fleetrun import BatchOrchestrator, BatchRequest, RunItem
    >>>
    >>> request = BatchRequest(repository="acme/api", items=[RunItem.create("Fix flaky test", repository="acme/api")])
    >>> async with BatchOrchestrator.connect() as orchestrator:
    ...     run = (await orchestrator.run(request, follow=True)).unwrap()
    ...     print(run.final_snapshot.status)
"""

__version__ = "0.3.0"

from .batch import (
    Accepted,
    BatchOptions,
    BatchOrchestrator,
    BatchRequest,
    BatchRun,
    BatchStatus,
    BatchStatusSnapshot,
    BatchSubmissionResult,
    BatchSubmitter,
    Pending,
    PollOutcome,
    PollSession,
    Rejected,
    RunItem,
    RunType,
    StatusPoller,
)
from .client import HttpTransport, RemoteOperationClient
from .foundation.config import FleetrunSettings, get_settings
from .foundation.errors import Err, Ok, RemoteError, Result, format_user_error
from .runtime.concurrency import CancelToken
from .runtime.resilience import CircuitBreaker, CircuitState
from .runtime.retry import RetryExecutor, RetryPolicy

__all__ = [
    "__version__",
    # Batch flow
    "BatchOrchestrator", "BatchRun", "BatchSubmitter", "StatusPoller", "PollSession", "PollOutcome",
    # Models
    "RunItem", "RunType", "BatchOptions", "BatchRequest", "BatchSubmissionResult",
    "Accepted", "Rejected", "Pending", "BatchStatus", "BatchStatusSnapshot",
    # Remote layer
    "HttpTransport", "RemoteOperationClient", "RetryExecutor", "RetryPolicy", "CircuitBreaker", "CircuitState",
    "CancelToken",
    # Errors & config
    "RemoteError", "Result", "Ok", "Err", "format_user_error", "FleetrunSettings", "get_settings",
]
