"""Fault tolerance: circuit breaker for upstream calls."""

from .breaker import BreakerStats, CircuitBreaker, CircuitState

__all__ = ["BreakerStats", "CircuitBreaker", "CircuitState"]
