"""Tests for the error taxonomy, upstream error parsing and user messages."""

from __future__ import annotations

import orjson
import pytest

from fleetrun.foundation.config import UrlSettings
from fleetrun.foundation.errors import (
    ApiError,
    AuthError,
    CircuitOpenError,
    ConflictError,
    DeadlineExceeded,
    ErrorCode,
    NetworkError,
    NotFoundError,
    OperationCancelled,
    PermanentError,
    QuotaError,
    RateLimitError,
    RequestValidationError,
    RetriesExhaustedError,
    ServerError,
    format_user_error,
    is_retryable,
    is_upstream_fault,
    parse_api_error,
    root_cause,
)

URLS = UrlSettings(pricing_url="https://example.test/pricing", repos_url="https://example.test/repos",
                   settings_url="https://example.test/keys")


# ─────────────────────────────────────────────────────────────────────────────
# Classification
# ─────────────────────────────────────────────────────────────────────────────


@pytest.mark.parametrize("error", [
    NetworkError("connection refused"),
    RateLimitError(),
    ServerError("bad gateway", status_code=502),
])
def test_upstream_errors_are_retryable(error: Exception) -> None:
    assert is_retryable(error)
    assert is_upstream_fault(error)


@pytest.mark.parametrize("error", [
    AuthError("bad key"),
    RequestValidationError("bad input"),
    NotFoundError("gone"),
    QuotaError(tier="free", limit=10),
    ConflictError("terminal"),
    ApiError("teapot", status_code=418),
    CircuitOpenError(failures=5, retry_after=30),
    OperationCancelled(),
    DeadlineExceeded(),
])
def test_fatal_errors_are_not_retryable(error: Exception) -> None:
    assert not is_retryable(error)
    assert not is_upstream_fault(error)


def test_retries_exhausted_counts_as_upstream_fault() -> None:
    exhausted = RetriesExhaustedError(3, ServerError("down", status_code=503))
    assert not is_retryable(exhausted)
    assert is_upstream_fault(exhausted)
    assert exhausted.code is ErrorCode.RETRIES_EXHAUSTED
    assert exhausted.status_code == 503


def test_root_cause_peels_wrappers() -> None:
    cause = NotFoundError("batch not found", status_code=404)
    assert root_cause(PermanentError(cause)) is cause
    assert root_cause(RetriesExhaustedError(2, cause)) is cause
    assert root_cause(cause) is cause


def test_network_timeout_has_timeout_code() -> None:
    assert NetworkError("slow", timeout=True).code is ErrorCode.TIMEOUT
    assert NetworkError("refused").code is ErrorCode.NETWORK_ERROR


# ─────────────────────────────────────────────────────────────────────────────
# parse_api_error
# ─────────────────────────────────────────────────────────────────────────────


@pytest.mark.parametrize(("status", "expected"), [
    (401, AuthError),
    (403, AuthError),
    (404, NotFoundError),
    (408, ServerError),
    (409, ConflictError),
    (422, RequestValidationError),
    (429, RateLimitError),
    (500, ServerError),
    (503, ServerError),
    (418, ApiError),
])
def test_status_code_classification(status: int, expected: type) -> None:
    err = parse_api_error(status, b"", urls=URLS)
    assert type(err) is expected
    assert err.status_code == status


def test_408_is_timeout_server_error() -> None:
    err = parse_api_error(408, b"", urls=URLS)
    assert err.retryable
    assert err.code is ErrorCode.TIMEOUT


def test_explicit_code_wins_over_status() -> None:
    body = b'{"error": "NO_RUNS_REMAINING", "details": {"tier": "free", "limit": 10, "remaining": 0}}'
    err = parse_api_error(403, body, urls=URLS)
    assert isinstance(err, QuotaError)
    assert err.tier == "free" and err.limit == 10
    assert err.upgrade_url == URLS.pricing_url


@pytest.mark.parametrize("details", [
    {"tier": "pro", "limit": "unlimited", "remaining": None},
    {"limit": [10], "used": {"n": 1}, "tier": None},
])
def test_quota_with_non_numeric_details(details: dict[str, object]) -> None:
    body = orjson.dumps({"error": "NO_RUNS_REMAINING", "details": details})
    err = parse_api_error(402, body, urls=URLS)
    assert isinstance(err, QuotaError)
    assert (err.limit, err.used, err.remaining) == (0, 0, 0)
    assert err.tier in ("pro", "")


def test_quota_numeric_strings_are_read() -> None:
    body = b'{"error": "NO_RUNS_REMAINING", "details": {"limit": "25", "used": 25, "remaining": "0"}}'
    err = parse_api_error(402, body, urls=URLS)
    assert (err.limit, err.used, err.remaining) == (25, 25, 0)


def test_invalid_api_key_is_auth_error_with_credentials_hint() -> None:
    err = parse_api_error(400, b'{"code": "INVALID_API_KEY", "message": "key revoked"}', urls=URLS)
    assert isinstance(err, AuthError)
    assert err.hint is not None and "API key" in err.hint


def test_branch_not_found_message_passes_through_verbatim() -> None:
    message = "Branch 'feature/x' not found in repository 'acme/api'"
    err = parse_api_error(404, f'{{"error": "BRANCH_NOT_FOUND", "message": "{message}"}}', urls=URLS)
    assert isinstance(err, NotFoundError)
    assert str(err) == message


def test_repo_not_found_names_repository() -> None:
    body = b'{"error": "REPO_NOT_FOUND", "details": {"repository": "acme/api"}}'
    err = parse_api_error(404, body, urls=URLS)
    assert isinstance(err, NotFoundError)
    assert "acme/api" in str(err) and URLS.repos_url in str(err)


def test_rate_limit_body_carries_retry_after() -> None:
    body = b'{"error": "RATE_LIMIT_EXCEEDED", "details": {"retry_after": "30s"}}'
    err = parse_api_error(429, body, urls=URLS)
    assert isinstance(err, RateLimitError)
    assert err.retry_after == "30s"
    assert "30s" in str(err)


def test_validation_body_carries_field() -> None:
    body = b'{"error": "VALIDATION_ERROR", "message": "prompt is empty", "details": {"field": "runs[0].prompt"}}'
    err = parse_api_error(400, body, urls=URLS)
    assert isinstance(err, RequestValidationError)
    assert err.field == "runs[0].prompt"


def test_non_json_body_becomes_message() -> None:
    err = parse_api_error(502, b"<html>Bad Gateway</html>", urls=URLS)
    assert isinstance(err, ServerError)
    assert "Bad Gateway" in err.message


def test_unknown_status_without_body_names_status() -> None:
    err = parse_api_error(418, b"", urls=URLS)
    assert "418" in str(err)


# ─────────────────────────────────────────────────────────────────────────────
# User-facing messages
# ─────────────────────────────────────────────────────────────────────────────


def test_format_network_error_has_connection_hint() -> None:
    text = format_user_error(NetworkError("connection refused"))
    assert "connection refused" in text
    assert "check your connection" in text


def test_format_auth_error_has_reconfigure_hint() -> None:
    text = format_user_error(AuthError("Invalid API key", reason="INVALID_API_KEY"))
    assert "Reconfigure" in text


def test_format_quota_error_has_upgrade_link() -> None:
    text = format_user_error(QuotaError(tier="free", limit=10, upgrade_url="https://example.test/pricing"))
    assert "https://example.test/pricing" in text


def test_format_wrapped_error_uses_cause_hint() -> None:
    text = format_user_error(RetriesExhaustedError(3, ServerError("down", status_code=503)))
    assert "giving up after 3 attempts" in text
    assert "try again" in text


def test_format_none_and_plain_exception() -> None:
    assert format_user_error(None) == ""
    assert format_user_error(ValueError("boom")) == "boom"
