"""Cancellation and task primitives for the async remote-operation layer.

Key Components:
    - CancelToken: explicit cancel + deadline, waitable sleeps that wake early
    - checkpoint: cooperative cancellation point
    - cancel_and_wait: stop a background task without leaking it
    - run_until_cancelled: race a request against a CancelToken
"""

from __future__ import annotations

from .cancel import CancelToken
from .task import cancel_and_wait, checkpoint, run_until_cancelled

__all__ = [
    "CancelToken",
    "cancel_and_wait",
    "checkpoint",
    "run_until_cancelled",
]
