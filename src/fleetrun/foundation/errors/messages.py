"""Translate upstream error responses into typed errors and user-facing text.

``parse_api_error`` reads the service's JSON error body
(``{error, message, status, code, details}``). An explicit error code in the
body wins over the HTTP status; otherwise the status decides the class.
Bodies that are not JSON fall back to their raw text as the message.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated

import orjson
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError

from .errors import (
    CONNECTION_HINT,
    ApiError,
    AuthError,
    ConflictError,
    ErrorCode,
    NetworkError,
    NotFoundError,
    QuotaError,
    RateLimitError,
    RemoteError,
    RequestValidationError,
    ServerError,
)
from .types import JsonDict

if TYPE_CHECKING:
    from fleetrun.foundation.config import UrlSettings


class ApiErrorBody(BaseModel):
    """Upstream error envelope. The code may arrive in either ``code`` or ``error``."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    error: str = ""
    message: str = ""
    status: str = ""
    code: str = ""
    details: JsonDict = Field(default_factory=dict)

    @property
    def error_code(self) -> str:
        return (self.code or self.error).upper()


def _count(value: object) -> int:
    """Quota figures are informational; anything non-numeric (e.g. "unlimited") reads as 0."""
    try:
        return int(value)  # type: ignore[call-overload]
    except (TypeError, ValueError, OverflowError):
        return 0


class QuotaDetails(BaseModel):
    """``details`` of a NO_RUNS_REMAINING body."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    tier: Annotated[str, BeforeValidator(lambda v: "" if v is None else str(v))] = ""
    limit: Annotated[int, BeforeValidator(_count)] = 0
    used: Annotated[int, BeforeValidator(_count)] = 0
    remaining: Annotated[int, BeforeValidator(_count)] = 0


_HTTP_STATUS_TEXT: dict[int, str] = {
    400: "Bad Request", 401: "Unauthorized", 403: "Forbidden", 404: "Not Found",
    408: "Request Timeout", 409: "Conflict", 422: "Unprocessable Entity", 429: "Too Many Requests",
    500: "Internal Server Error", 502: "Bad Gateway", 503: "Service Unavailable", 504: "Gateway Timeout",
}


def status_messages(urls: UrlSettings) -> dict[str, str]:
    """Default user-facing messages keyed by upstream error code."""
    return {
        "NO_RUNS_REMAINING": f"You've used all your available runs. Upgrade your plan at {urls.pricing_url}",
        "REPO_NOT_FOUND": f"Repository not found or not connected. Please connect it at {urls.repos_url}",
        "INVALID_API_KEY": f"Invalid API key. Get a new one at {urls.settings_url}",
        "RATE_LIMIT_EXCEEDED": "Rate limit exceeded. Please wait before retrying",
        "SERVER_ERROR": "The service is experiencing issues. Please try again later",
        "UNAUTHORIZED": "You don't have permission to access this resource",
        "FORBIDDEN": "Access to this resource is forbidden",
        "TIMEOUT": "Request timed out. The operation may still be processing",
        "NETWORK_ERROR": "Network connectivity issue. Please check your connection",
        "VALIDATION_ERROR": "Invalid input provided. Please check your request",
        "QUOTA_EXCEEDED": f"You have exceeded your quota limits. Upgrade at {urls.pricing_url}",
    }


def _default_urls() -> UrlSettings:
    from fleetrun.foundation.config import get_settings
    return get_settings().urls


def parse_api_error(status_code: int, body: bytes | str, *, urls: UrlSettings | None = None) -> RemoteError:
    """Build the typed error for a non-success response."""
    urls = urls or _default_urls()
    raw = body.encode() if isinstance(body, str) else body
    try:
        parsed = ApiErrorBody.model_validate(orjson.loads(raw)) if raw.strip() else None
    except (orjson.JSONDecodeError, ValidationError, TypeError):
        parsed = None
    if parsed is not None:
        return _from_body(status_code, parsed, urls)
    return _from_status(status_code, raw.decode(errors="replace").strip(), urls)


def _from_body(status_code: int, body: ApiErrorBody, urls: UrlSettings) -> RemoteError:
    messages = status_messages(urls)
    details = body.details
    match body.error_code:
        case "NO_RUNS_REMAINING":
            quota = QuotaDetails.model_validate(details)
            return QuotaError(
                tier=quota.tier,
                limit=quota.limit,
                used=quota.used,
                remaining=quota.remaining,
                upgrade_url=urls.pricing_url,
                status_code=status_code,
            )
        case "INVALID_API_KEY" | "UNAUTHORIZED":
            return AuthError(messages["INVALID_API_KEY"], reason=body.code or body.error, status_code=status_code)
        case "REPO_NOT_FOUND":
            msg = messages["REPO_NOT_FOUND"]
            if repo := details.get("repository"):
                msg = f"Repository '{repo}' not found or not connected. Connect it at: {urls.repos_url}"
            return NotFoundError(msg, status_code=status_code, details=details)
        case "BRANCH_NOT_FOUND":
            # upstream message names the branch and repository; keep it verbatim
            return NotFoundError(body.message or "Branch not found in repository", status_code=status_code, details=details)
        case "RATE_LIMIT_EXCEEDED":
            retry_after = details.get("retry_after")
            return RateLimitError(body.message or messages["RATE_LIMIT_EXCEEDED"],
                                  retry_after=str(retry_after) if retry_after else None,
                                  status_code=status_code, details=details)
        case "VALIDATION_ERROR":
            field = details.get("field")
            return RequestValidationError(body.message or messages["VALIDATION_ERROR"],
                                          field=str(field) if field else None,
                                          status_code=status_code, details=details)
    return _from_status(status_code, body.message or body.error, urls, details=details)


def _from_status(status_code: int, message: str, urls: UrlSettings, *, details: JsonDict | None = None) -> RemoteError:
    messages = status_messages(urls)
    match status_code:
        case 401:
            return AuthError(message or messages["INVALID_API_KEY"], reason="http_401", status_code=401, details=details)
        case 403:
            return AuthError(message or messages["FORBIDDEN"], reason="http_403", status_code=403, details=details)
        case 404:
            return NotFoundError(message or "Resource not found", status_code=404, details=details)
        case 408:
            return ServerError(message or messages["TIMEOUT"], status_code=408, code=ErrorCode.TIMEOUT, details=details)
        case 409:
            return ConflictError(message or "Request conflicts with the current state of the resource",
                                 status_code=409, details=details)
        case 422:
            return RequestValidationError(message or messages["VALIDATION_ERROR"], status_code=422, details=details)
        case 429:
            return RateLimitError(message or messages["RATE_LIMIT_EXCEEDED"], status_code=429, details=details)
        case _ if 500 <= status_code < 600:
            return ServerError(message or messages["SERVER_ERROR"], status_code=status_code, details=details)
    return ApiError(message or f"Unexpected error: {status_text(status_code)} (status {status_code})", status_code=status_code, details=details)


def status_text(status_code: int) -> str:
    return _HTTP_STATUS_TEXT.get(status_code, f"HTTP {status_code}")


def format_user_error(err: BaseException | None) -> str:
    """Human-readable message for display at the top level."""
    if err is None:
        return ""
    match err:
        case NetworkError():
            return f"Network error: {err.message}. {CONNECTION_HINT}"
        case RemoteError():
            return err.render()
    return str(err)
