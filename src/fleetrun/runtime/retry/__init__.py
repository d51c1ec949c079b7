"""Retry with exponential backoff and error classification.

Key Components:
    - RetryPolicy: attempts, delays, multiplier, jitter (immutable)
    - ExponentialBackoff: delay math
    - RetryExecutor: runs a Result-returning operation under a policy
"""

from .backoff import Backoff, ExponentialBackoff
from .executor import OnRetry, Operation, RetryExecutor
from .policy import DEFAULT_POLICY, SINGLE_ATTEMPT, RetryPolicy

__all__ = [
    "Backoff",
    "ExponentialBackoff",
    "RetryPolicy",
    "DEFAULT_POLICY",
    "SINGLE_ATTEMPT",
    "RetryExecutor",
    "Operation",
    "OnRetry",
]
