"""Typed error taxonomy for remote operations.

Every failure the client can observe maps to one ``RemoteError`` subclass.
The class decides whether the retry executor may try again (``retryable``)
and which remediation hint is shown to the user.
"""

from __future__ import annotations

from enum import StrEnum
from typing import ClassVar

from .types import JsonDict


class ErrorCode(StrEnum):
    """Stable error codes for programmatic branching."""
    NETWORK_ERROR = "NETWORK_ERROR"
    RATE_LIMITED = "RATE_LIMITED"
    SERVER_ERROR = "SERVER_ERROR"
    TIMEOUT = "TIMEOUT"
    AUTH_FAILED = "AUTH_FAILED"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    CONFLICT = "CONFLICT"
    API_ERROR = "API_ERROR"
    PARSE_ERROR = "PARSE_ERROR"
    CIRCUIT_OPEN = "CIRCUIT_OPEN"
    PERMANENT_FAILURE = "PERMANENT_FAILURE"
    RETRIES_EXHAUSTED = "RETRIES_EXHAUSTED"
    CANCELLED = "CANCELLED"
    DEADLINE_EXCEEDED = "DEADLINE_EXCEEDED"


CONNECTION_HINT = "Please check your connection and try again."
CREDENTIALS_HINT = "Reconfigure your API key (set FLEETRUN_API_KEY or run the login command again)."


class RemoteError(Exception):
    """Base class for every failure surfaced by the remote-operation layer.

    Attributes:
        message: Human-readable message, passed through from upstream when available
        code: Stable ``ErrorCode``
        status_code: HTTP status that produced the error, if any
        details: Extra structured context from the upstream error body
    """

    default_code: ClassVar[ErrorCode] = ErrorCode.API_ERROR
    retryable: ClassVar[bool] = False
    default_hint: ClassVar[str | None] = None

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: ErrorCode | None = None,
        hint: str | None = None,
        details: JsonDict | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code or self.default_code
        self.details: JsonDict = details or {}
        self._hint = hint

    @property
    def hint(self) -> str | None:
        """Remediation hint for display, if any."""
        return self._hint or self.default_hint

    def render(self) -> str:
        """Format for terminal display: message, then hint on its own line."""
        return f"{self}\n{self.hint}" if self.hint else str(self)

    def __repr__(self) -> str:
        status = f", status={self.status_code}" if self.status_code is not None else ""
        return f"{type(self).__name__}({self.message!r}, code={self.code.value}{status})"


# ─────────────────────────────────────────────────────────────────────────────
# Upstream / transport errors
# ─────────────────────────────────────────────────────────────────────────────


class NetworkError(RemoteError):
    """Transport-level failure: DNS, connection refused, read/connect timeout."""

    default_code = ErrorCode.NETWORK_ERROR
    retryable = True
    default_hint = CONNECTION_HINT

    def __init__(self, message: str, *, operation: str | None = None, url: str | None = None, timeout: bool = False) -> None:
        super().__init__(message, code=ErrorCode.TIMEOUT if timeout else None)
        self.operation, self.url, self.timeout = operation, url, timeout

    def __str__(self) -> str:
        return f"network error during {self.operation}: {self.message}" if self.operation else f"network error: {self.message}"


class RateLimitError(RemoteError):
    """HTTP 429 - upstream throttling."""

    default_code = ErrorCode.RATE_LIMITED
    retryable = True

    def __init__(self, message: str = "rate limit exceeded", *, retry_after: str | None = None,
                 status_code: int | None = 429, details: JsonDict | None = None) -> None:
        super().__init__(message, status_code=status_code, details=details)
        self.retry_after = retry_after

    def __str__(self) -> str:
        if self.retry_after:
            return f"rate limit exceeded. Please wait {self.retry_after} before retrying"
        return self.message


class ServerError(RemoteError):
    """HTTP 5xx or 408 - upstream fault."""

    default_code = ErrorCode.SERVER_ERROR
    retryable = True
    default_hint = CONNECTION_HINT

    def __str__(self) -> str:
        return f"{self.message} (status {self.status_code})" if self.status_code else self.message


class AuthError(RemoteError):
    """HTTP 401/403 - bad, expired or revoked credential."""

    default_code = ErrorCode.AUTH_FAILED
    default_hint = CREDENTIALS_HINT

    def __init__(self, message: str, *, reason: str | None = None, status_code: int | None = None,
                 details: JsonDict | None = None) -> None:
        super().__init__(message, status_code=status_code, details=details)
        self.reason = reason

    def __str__(self) -> str:
        return f"authentication failed: {self.message} ({self.reason})" if self.reason else f"authentication failed: {self.message}"


class RequestValidationError(RemoteError):
    """HTTP 422 or a request rejected locally before sending."""

    default_code = ErrorCode.VALIDATION_ERROR

    def __init__(self, message: str, *, field: str | None = None, status_code: int | None = None,
                 details: JsonDict | None = None) -> None:
        super().__init__(message, status_code=status_code, details=details)
        self.field = field

    def __str__(self) -> str:
        return f"validation error for field '{self.field}': {self.message}" if self.field else f"validation error: {self.message}"


class NotFoundError(RemoteError):
    """HTTP 404 - unknown run, batch, repository or branch.

    The upstream message is kept verbatim (it names the missing branch and
    repository for BRANCH_NOT_FOUND).
    """

    default_code = ErrorCode.NOT_FOUND

    def __str__(self) -> str:
        return self.message


class QuotaError(RemoteError):
    """Plan limit reached (NO_RUNS_REMAINING)."""

    default_code = ErrorCode.QUOTA_EXCEEDED

    def __init__(self, *, tier: str = "", limit: int = 0, used: int = 0, remaining: int = 0,
                 upgrade_url: str | None = None, status_code: int | None = None) -> None:
        super().__init__("no runs remaining", status_code=status_code,
                         hint=f"Upgrade your plan at {upgrade_url}" if upgrade_url else None)
        self.tier, self.limit, self.used, self.remaining, self.upgrade_url = tier, limit, used, remaining, upgrade_url

    def __str__(self) -> str:
        if self.upgrade_url:
            return f"no runs remaining (Tier: {self.tier}, Limit: {self.limit}/month). Upgrade at: {self.upgrade_url}"
        return f"quota exceeded: {self.used} of {self.limit} runs used (Tier: {self.tier})"

    def render(self) -> str:
        return str(self)  # upgrade link is already part of the message


class ConflictError(RemoteError):
    """HTTP 409 - e.g. cancelling a batch that is already terminal."""

    default_code = ErrorCode.CONFLICT

    def __str__(self) -> str:
        return self.message


class ApiError(RemoteError):
    """Any other non-2xx response, or a response body that cannot be decoded."""

    def __str__(self) -> str:
        return f"{self.message} (status {self.status_code})" if self.status_code else self.message


# ─────────────────────────────────────────────────────────────────────────────
# Local errors produced by the resilience layer itself
# ─────────────────────────────────────────────────────────────────────────────


class CircuitOpenError(RemoteError):
    """Synthetic rejection from an open circuit breaker. Never sent by upstream."""

    default_code = ErrorCode.CIRCUIT_OPEN
    default_hint = "The service is failing repeatedly; wait a moment before trying again."

    def __init__(self, *, failures: int, retry_after: float) -> None:
        super().__init__(f"circuit breaker is open after {failures} failures; retry in {retry_after:.0f}s")
        self.failures, self.retry_after = failures, retry_after


class PermanentError(RemoteError):
    """Executor wrapper: the underlying error is not retryable."""

    default_code = ErrorCode.PERMANENT_FAILURE

    def __init__(self, cause: RemoteError) -> None:
        super().__init__(f"permanent error: {cause}", status_code=cause.status_code)
        self.cause = cause
        self.__cause__ = cause

    @property
    def hint(self) -> str | None:
        return self.cause.hint


class RetriesExhaustedError(RemoteError):
    """Executor wrapper: every attempt failed with a retryable error."""

    default_code = ErrorCode.RETRIES_EXHAUSTED

    def __init__(self, attempts: int, cause: RemoteError) -> None:
        super().__init__(f"giving up after {attempts} attempts: {cause}", status_code=cause.status_code)
        self.attempts, self.cause = attempts, cause
        self.__cause__ = cause

    @property
    def hint(self) -> str | None:
        return self.cause.hint


class OperationCancelled(RemoteError):
    """The caller's cancellation signal fired."""

    default_code = ErrorCode.CANCELLED

    def __init__(self, message: str = "operation cancelled") -> None:
        super().__init__(message)


class DeadlineExceeded(OperationCancelled):
    """The caller's deadline passed before the operation finished."""

    default_code = ErrorCode.DEADLINE_EXCEEDED
    default_hint = "The operation may still be processing server-side."

    def __init__(self, message: str = "deadline exceeded") -> None:
        super().__init__(message)


# ─────────────────────────────────────────────────────────────────────────────
# Classification helpers
# ─────────────────────────────────────────────────────────────────────────────


def is_retryable(err: BaseException) -> bool:
    """Whether the retry executor may try again after this error."""
    return isinstance(err, RemoteError) and err.retryable


def is_upstream_fault(err: BaseException) -> bool:
    """Whether the error says the upstream itself is unhealthy (counts against a breaker)."""
    return is_retryable(err) or isinstance(err, RetriesExhaustedError)


def root_cause(err: RemoteError) -> RemoteError:
    """Peel executor wrappers to reach the error the upstream actually produced."""
    while isinstance(err, PermanentError | RetriesExhaustedError):
        err = err.cause
    return err
