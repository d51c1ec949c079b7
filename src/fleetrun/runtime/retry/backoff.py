"""Backoff delay calculation for retry attempts.

Delays grow exponentially from ``initial_delay`` and are capped at
``max_delay``. Jitter is additive: each wait lies in
``[delay, delay * (1 + jitter))`` so concurrent retriers spread out
without ever waiting less than the base delay.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable


@runtime_checkable
class Backoff(Protocol):
    """Protocol for backoff delay calculation.

    Attempt numbers are 0-indexed (wait before the second invocation = attempt 0).
    """

    def delay(self, attempt: int) -> float:
        """Base delay in seconds for the given retry."""
        ...

    def jittered(self, delay: float) -> float:
        """Actual wait for a base delay."""
        ...


@dataclass(frozen=True, slots=True)
class ExponentialBackoff:
    """Exponential backoff with additive jitter.

    Delay = min(initial_delay * (multiplier ^ attempt), max_delay)
    Wait  = Delay + uniform[0, jitter * Delay)

    Attributes:
        initial_delay: First delay in seconds (default: 1.0)
        max_delay: Cap in seconds (default: 30.0)
        multiplier: Growth factor, >= 1 (default: 2.0)
        jitter: Fraction in [0, 1) of extra random wait (default: 0.2)
        rng: Random source, injectable for deterministic tests
    """

    initial_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter: float = 0.2
    rng: random.Random = field(default_factory=random.Random, compare=False, repr=False)

    def delay(self, attempt: int) -> float:
        return min(self.initial_delay * (self.multiplier ** attempt), self.max_delay)

    def next_delay(self, delay: float) -> float:
        """Step a running delay forward: min(delay * multiplier, max_delay)."""
        return min(delay * self.multiplier, self.max_delay)

    def jittered(self, delay: float) -> float:
        return delay + self.rng.random() * self.jitter * delay if self.jitter > 0 else delay
