"""Batch data model: requests, per-item outcomes and status snapshots.

Python attribute names are snake_case; aliases carry the service's camelCase
wire names. Request models serialize with ``to_payload()``; response models
accept both ``{"data": {...}}`` envelopes and bare bodies.

Each submitted item resolves to exactly one outcome, stored at its request
index::

    Accepted(run_id, title, status, repository)
    Rejected(error_code, message, prompt, existing_run_id)
    Pending()   # 207: the server is still creating it
"""

from __future__ import annotations

import hashlib
from datetime import datetime
from enum import StrEnum
from typing import Annotated, Literal

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)

from fleetrun.foundation.errors import JsonDict


def _unwrap_data(value: object) -> object:
    """Accept ``{"data": {...}}`` envelopes as well as bare bodies."""
    if isinstance(value, dict) and isinstance(value.get("data"), dict):
        return value["data"]
    return value


def _as_str(value: object) -> object:
    """Run ids arrive as ints from some endpoints and strings from others."""
    return str(value) if isinstance(value, int) and not isinstance(value, bool) else value


RunId = Annotated[str, BeforeValidator(_as_str)]


class _Wire(BaseModel):
    """Response body model: tolerant of unknown fields."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)


# ─────────────────────────────────────────────────────────────────────────────
# Requests
# ─────────────────────────────────────────────────────────────────────────────


class RunType(StrEnum):
    RUN = "run"
    APPROVAL = "approval"


class RunItem(BaseModel):
    """One run definition inside a batch. Immutable once built.

    ``content_hash`` identifies the definition so the service can detect
    duplicates; ``create()`` computes it.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    prompt: Annotated[str, Field(min_length=1)]
    title: str | None = None
    target_branch: str | None = Field(default=None, alias="target")
    context: str | None = None
    content_hash: str | None = Field(default=None, alias="fileHash")

    @classmethod
    def create(
        cls,
        prompt: str,
        *,
        repository: str = "",
        title: str | None = None,
        target_branch: str | None = None,
        context: str | None = None,
    ) -> RunItem:
        """Build an item with its content hash filled in."""
        return cls(
            prompt=prompt,
            title=title,
            target_branch=target_branch,
            context=context,
            content_hash=content_hash(repository, prompt, target_branch or "", context or ""),
        )


def content_hash(repository: str, prompt: str, target: str = "", context: str = "") -> str:
    """SHA-256 hex digest of ``"{repository}-{prompt}-{target}-{context}"``."""
    return hashlib.sha256(f"{repository}-{prompt}-{target}-{context}".encode()).hexdigest()


class BatchOptions(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    parallel: Annotated[int, Field(ge=1)] | None = None
    stop_on_failure: bool = Field(default=False, alias="stopOnFailure")


class BatchRequest(BaseModel):
    """A batch of runs against one repository.

    Exactly one of ``repository`` (``owner/name``) or ``repo_id`` identifies the
    target. The item count is checked by the submitter, not here, so an
    oversized request surfaces as a typed error rather than a construction failure.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    repository: str | None = Field(default=None, alias="repositoryName")
    repo_id: int | None = Field(default=None, alias="repoId")
    run_type: RunType = Field(default=RunType.RUN, alias="runType")
    source_branch: str | None = Field(default=None, alias="sourceBranch")
    batch_title: str | None = Field(default=None, alias="batchTitle")
    force: bool = False
    items: tuple[RunItem, ...] = Field(default=(), alias="runs")
    options: BatchOptions | None = None

    @model_validator(mode="after")
    def _one_repository(self) -> BatchRequest:
        if (self.repository is None) == (self.repo_id is None):
            raise ValueError("exactly one of repository or repo_id is required")
        return self

    def to_payload(self) -> JsonDict:
        """Wire body for ``POST /api/v1/runs/bulk``."""
        payload = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        if not self.force:
            payload.pop("force", None)
        return payload


# ─────────────────────────────────────────────────────────────────────────────
# Submission response (wire)
# ─────────────────────────────────────────────────────────────────────────────


class CreatedRun(_Wire):
    id: RunId
    status: str = ""
    repository_name: str = Field(default="", alias="repositoryName")
    title: str = ""
    request_index: int | None = Field(default=None, alias="requestIndex")


class FailedRun(_Wire):
    request_index: int | None = Field(default=None, alias="requestIndex")
    prompt: str = ""
    error: str = ""
    message: str = ""
    existing_run_id: RunId | None = Field(default=None, alias="existingRunId")


class SubmissionMetadata(_Wire):
    total_requested: int | None = Field(default=None, alias="totalRequested")
    total_successful: int | None = Field(default=None, alias="totalSuccessful")
    total_failed: int | None = Field(default=None, alias="totalFailed")


class BulkSubmitResponse(_Wire):
    batch_id: str = Field(alias="batchId")
    batch_title: str | None = Field(default=None, alias="batchTitle")
    successful: tuple[CreatedRun, ...] = ()
    failed: tuple[FailedRun, ...] = ()
    metadata: SubmissionMetadata | None = None

    @model_validator(mode="before")
    @classmethod
    def _unwrap(cls, value: object) -> object:
        return _unwrap_data(value)


# ─────────────────────────────────────────────────────────────────────────────
# Submission result (per-item outcomes)
# ─────────────────────────────────────────────────────────────────────────────


class _Outcome(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class Accepted(_Outcome):
    kind: Literal["accepted"] = "accepted"
    run_id: str
    title: str = ""
    status: str = ""
    repository: str = ""


class Rejected(_Outcome):
    kind: Literal["rejected"] = "rejected"
    error_code: str
    message: str = ""
    prompt: str = ""
    existing_run_id: str | None = None


class Pending(_Outcome):
    kind: Literal["pending"] = "pending"


ItemOutcome = Annotated[Accepted | Rejected | Pending, Field(discriminator="kind")]


class BatchTotals(BaseModel):
    model_config = ConfigDict(frozen=True)

    requested: int
    successful: int
    failed: int

    @computed_field
    @property
    def pending(self) -> int:
        return self.requested - self.successful - self.failed


class BatchSubmissionResult(BaseModel):
    """What the service did with each submitted item.

    ``outcomes[i]`` is the outcome of ``request.items[i]``; the tuple always has
    one entry per requested item. ``anomalies`` records response entries that
    could not be placed (out-of-range or duplicate indices).
    """

    model_config = ConfigDict(frozen=True)

    batch_id: str
    batch_title: str | None = None
    http_status: int
    outcomes: tuple[ItemOutcome, ...]
    metadata: SubmissionMetadata | None = None
    anomalies: tuple[str, ...] = ()

    @classmethod
    def from_response(cls, requested: int, http_status: int, body: BulkSubmitResponse) -> BatchSubmissionResult:
        """Place every successful/failed entry at its request index; the rest are Pending."""
        slots: list[Accepted | Rejected | None] = [None] * requested
        anomalies: list[str] = []

        def place(index: int | None, outcome: Accepted | Rejected) -> None:
            if index is None:  # no index on the wire: next unresolved slot, in order
                index = next((i for i, s in enumerate(slots) if s is None), requested)
            if not 0 <= index < requested:
                anomalies.append(f"{outcome.kind} entry has out-of-range index {index} (batch of {requested})")
            elif slots[index] is not None:
                anomalies.append(f"index {index} reported more than once ({slots[index].kind}, {outcome.kind})")
            else:
                slots[index] = outcome

        for run in body.successful:
            place(run.request_index, Accepted(run_id=run.id, title=run.title, status=run.status,
                                              repository=run.repository_name))
        for fail in body.failed:
            place(fail.request_index, Rejected(error_code=fail.error or "UNKNOWN", message=fail.message,
                                               prompt=fail.prompt, existing_run_id=fail.existing_run_id))

        return cls(
            batch_id=body.batch_id,
            batch_title=body.batch_title,
            http_status=http_status,
            outcomes=tuple(s if s is not None else Pending() for s in slots),
            metadata=body.metadata,
            anomalies=tuple(anomalies),
        )

    # ─── Derived views ─────────────────────────────────────────────────

    @property
    def still_processing(self) -> bool:
        """207 Multi-Status: some items are still being created server-side."""
        return self.http_status == 207

    @property
    def successful(self) -> list[tuple[int, Accepted]]:
        return [(i, o) for i, o in enumerate(self.outcomes) if isinstance(o, Accepted)]

    @property
    def failed(self) -> list[tuple[int, Rejected]]:
        return [(i, o) for i, o in enumerate(self.outcomes) if isinstance(o, Rejected)]

    @property
    def pending(self) -> list[int]:
        return [i for i, o in enumerate(self.outcomes) if isinstance(o, Pending)]

    @property
    def totals(self) -> BatchTotals:
        return BatchTotals(requested=len(self.outcomes), successful=len(self.successful), failed=len(self.failed))

    @property
    def run_ids(self) -> list[str]:
        return [o.run_id for _, o in self.successful]

    def reconcile(self) -> list[str]:
        """Discrepancies between the outcomes and what the service reported; empty when consistent."""
        problems = list(self.anomalies)
        totals = self.totals
        if totals.pending and not self.still_processing:
            problems.append(f"{totals.pending} item(s) unaccounted for in a complete (HTTP {self.http_status}) response")
        if (meta := self.metadata) is not None:
            for name, reported, counted in (
                ("requested", meta.total_requested, totals.requested),
                ("successful", meta.total_successful, totals.successful),
                ("failed", meta.total_failed, totals.failed),
            ):
                if reported is not None and reported != counted:
                    problems.append(f"server reports {reported} {name}, response lists {counted}")
        return problems


# ─────────────────────────────────────────────────────────────────────────────
# Status snapshots
# ─────────────────────────────────────────────────────────────────────────────


class BatchStatus(StrEnum):
    """Overall batch status. Parsing is case-insensitive."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    PARTIALLY_FAILED = "partially_failed"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL

    @classmethod
    def _missing_(cls, value: object) -> BatchStatus | None:
        if isinstance(value, str):
            normalized = value.strip().lower().replace("-", "_")
            return _STATUS_ALIASES.get(normalized) or next((m for m in cls if m.value == normalized), None)
        return None


_TERMINAL = frozenset({BatchStatus.COMPLETED, BatchStatus.FAILED, BatchStatus.CANCELLED, BatchStatus.PARTIALLY_FAILED})
_STATUS_ALIASES = {
    "pending": BatchStatus.QUEUED,
    "running": BatchStatus.PROCESSING,
    "in_progress": BatchStatus.PROCESSING,
    "canceled": BatchStatus.CANCELLED,
}


class RunStatusEntry(_Wire):
    id: RunId
    title: str = ""
    status: str = ""
    progress: int | None = None
    completed_at: datetime | None = Field(default=None, alias="completedAt")
    pr_url: str | None = Field(default=None, alias="prUrl")
    error: str | None = None


class BatchCounts(_Wire):
    total: int = Field(default=0, alias="totalRuns")
    queued: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0


class BatchStatusSnapshot(_Wire):
    """One poll result for a batch. Built from ``GET /api/v1/runs/bulk/{batchId}``."""

    batch_id: str = Field(alias="batchId")
    status: BatchStatus
    runs: tuple[RunStatusEntry, ...] = ()
    counts: BatchCounts = Field(default_factory=BatchCounts)
    started_at: datetime | None = Field(default=None, alias="startedAt")
    estimated_completion_time: datetime | None = Field(default=None, alias="estimatedCompletionTime")

    @field_validator("status", mode="before")
    @classmethod
    def _parse_status(cls, value: object) -> object:
        return BatchStatus(value) if isinstance(value, str) else value

    @model_validator(mode="before")
    @classmethod
    def _lift_metadata(cls, value: object) -> object:
        value = _unwrap_data(value)
        if not isinstance(value, dict) or not isinstance(meta := value.get("metadata"), dict):
            return value
        lifted = {k: v for k, v in value.items() if k != "metadata"}
        lifted.setdefault("counts", meta)
        for key in ("startedAt", "estimatedCompletionTime"):
            if key in meta:
                lifted.setdefault(key, meta[key])
        return lifted

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal
