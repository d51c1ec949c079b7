"""Retry policy configuration.

A policy is an immutable value: the executor keeps attempt counters and the
running delay per call, so one policy is safely shared by concurrent calls.
"""

from __future__ import annotations

from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, computed_field

from .backoff import ExponentialBackoff


class RetryPolicy(BaseModel):
    """How many times to invoke an operation and how long to wait in between.

    Attributes:
        max_attempts: Total invocations including the first (>= 1)
        initial_delay: Wait before the second attempt, in seconds
        max_delay: Cap on the base wait
        multiplier: Growth factor applied after every wait (>= 1)
        jitter: Extra random wait as a fraction of the base delay, in [0, 1)

    Example:
        >>> policy = RetryPolicy(max_attempts=5, initial_delay=0.5)
        >>> policy.backoff.delay(2)
        2.0
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        validate_default=True,
        json_schema_extra={
            "title": "Retry Policy",
            "examples": [{"max_attempts": 3, "initial_delay": 1.0, "max_delay": 30.0}],
        },
    )

    max_attempts: Annotated[int, Field(ge=1)] = 3
    initial_delay: Annotated[float, Field(ge=0)] = 1.0
    max_delay: Annotated[float, Field(ge=0)] = 30.0
    multiplier: Annotated[float, Field(ge=1)] = 2.0
    jitter: Annotated[float, Field(ge=0, lt=1)] = 0.2

    @computed_field
    @property
    def is_single_attempt(self) -> bool:
        return self.max_attempts == 1

    @property
    def backoff(self) -> ExponentialBackoff:
        return ExponentialBackoff(
            initial_delay=self.initial_delay,
            max_delay=self.max_delay,
            multiplier=self.multiplier,
            jitter=self.jitter,
        )

    def with_attempts(self, max_attempts: int) -> RetryPolicy:
        """Copy with a different attempt budget."""
        return self.model_copy(update={"max_attempts": max_attempts})


DEFAULT_POLICY = RetryPolicy()

# Poll ticks use this: the poll interval already spaces out retries.
SINGLE_ATTEMPT = RetryPolicy(max_attempts=1, initial_delay=0.0, jitter=0.0)
