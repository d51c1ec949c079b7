"""API paths, relative to the configured base URL."""

from __future__ import annotations

from urllib.parse import quote

BULK_RUNS = "/api/v1/runs/bulk"


def bulk_run_url(batch_id: str) -> str:
    """Status (GET) and cancel (DELETE) path for one batch."""
    return f"{BULK_RUNS}/{quote(batch_id, safe='')}"
