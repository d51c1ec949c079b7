"""Tests for the transport and the breaker ∘ retry composition."""

from __future__ import annotations

import httpx
import orjson
import pytest

from fleetrun import __version__
from fleetrun.client import HttpTransport, RemoteOperationClient, bulk_run_url
from fleetrun.foundation.errors import (
    AuthError,
    CircuitOpenError,
    ErrorCode,
    NetworkError,
    NotFoundError,
    QuotaError,
    RateLimitError,
    RetriesExhaustedError,
    ServerError,
    is_upstream_fault,
)
from fleetrun.runtime.concurrency import CancelToken
from fleetrun.runtime.resilience import CircuitBreaker, CircuitState
from fleetrun.runtime.retry import SINGLE_ATTEMPT, RetryExecutor

from .conftest import BASE_URL, FAST_POLICY, FakeService, json_response

PATH = bulk_run_url("batch-123")


@pytest.mark.asyncio
async def test_success_returns_response(remote: RemoteOperationClient, service: FakeService) -> None:
    service.script("GET", PATH, json_response(200, {"batchId": "batch-123"}))
    result = await remote.call("GET", PATH)
    assert result.unwrap().status_code == 200
    assert service.calls("GET", PATH) == 1


@pytest.mark.asyncio
async def test_requests_carry_auth_and_json_headers(remote: RemoteOperationClient, service: FakeService) -> None:
    service.script("POST", "/api/v1/runs/bulk", json_response(201, {}))
    await remote.call("POST", "/api/v1/runs/bulk", body={"runs": [{"prompt": "x"}]}, accept=(201,))

    sent = service.requests[0]
    assert sent.headers["Authorization"] == "Bearer sk-test"
    assert sent.headers["Content-Type"] == "application/json"
    assert sent.headers["User-Agent"] == f"fleetrun/{__version__}"
    assert orjson.loads(sent.content) == {"runs": [{"prompt": "x"}]}


@pytest.mark.asyncio
async def test_5xx_is_retried_then_succeeds(remote: RemoteOperationClient, service: FakeService) -> None:
    service.script("GET", PATH, json_response(503, {}), json_response(502, {}), json_response(200, {}))
    result = await remote.call("GET", PATH)
    assert result.is_ok()
    assert service.calls("GET", PATH) == 3
    assert remote.breaker.consecutive_failures == 0


@pytest.mark.asyncio
async def test_5xx_status_overrides_body_code(remote: RemoteOperationClient, service: FakeService) -> None:
    service.script("GET", PATH, json_response(503, {"error": "INVALID_API_KEY", "message": "upstream auth proxy down"}))

    error = (await remote.call("GET", PATH)).unwrap_err()

    assert isinstance(error, RetriesExhaustedError)
    assert isinstance(error.cause, ServerError)
    assert error.cause.status_code == 503
    assert service.calls("GET", PATH) == FAST_POLICY.max_attempts


@pytest.mark.asyncio
async def test_exhausted_retries_count_as_one_breaker_failure(
    remote: RemoteOperationClient, service: FakeService,
) -> None:
    service.script("GET", PATH, json_response(500, {"message": "boom"}))
    result = await remote.call("GET", PATH)

    error = result.unwrap_err()
    assert isinstance(error, RetriesExhaustedError)
    assert isinstance(error.cause, ServerError)
    assert service.calls("GET", PATH) == FAST_POLICY.max_attempts
    assert remote.breaker.consecutive_failures == 1


@pytest.mark.asyncio
async def test_client_error_returned_unwrapped_after_one_call(
    remote: RemoteOperationClient, service: FakeService,
) -> None:
    service.script("GET", PATH, json_response(404, {"error": "NOT_FOUND", "message": "batch batch-123 not found"}))
    result = await remote.call("GET", PATH)

    error = result.unwrap_err()
    assert isinstance(error, NotFoundError)
    assert str(error) == "batch batch-123 not found"
    assert service.calls("GET", PATH) == 1
    assert remote.breaker.consecutive_failures == 0


@pytest.mark.asyncio
async def test_401_is_auth_error(remote: RemoteOperationClient, service: FakeService) -> None:
    service.script("GET", PATH, json_response(401, {"error": "Invalid API key"}))
    error = (await remote.call("GET", PATH)).unwrap_err()
    assert isinstance(error, AuthError)
    assert service.calls("GET", PATH) == 1


@pytest.mark.asyncio
async def test_429_is_retryable_and_keeps_retry_after(remote: RemoteOperationClient, service: FakeService) -> None:
    throttled = httpx.Response(429, content=b'{"error": "Too many"}', headers={"Retry-After": "2"})
    service.script("GET", PATH, throttled)
    error = (await remote.call("GET", PATH, policy=SINGLE_ATTEMPT)).unwrap_err()

    assert isinstance(error, RetriesExhaustedError)
    assert isinstance(error.cause, RateLimitError)
    assert error.cause.retry_after == "2"


@pytest.mark.asyncio
async def test_429_quota_body_stays_fatal(remote: RemoteOperationClient, service: FakeService) -> None:
    service.script("POST", "/api/v1/runs/bulk", json_response(429, {"error": "NO_RUNS_REMAINING"}))
    error = (await remote.call("POST", "/api/v1/runs/bulk", body={})).unwrap_err()
    assert isinstance(error, QuotaError)
    assert service.calls("POST", "/api/v1/runs/bulk") == 1


@pytest.mark.asyncio
async def test_408_is_retryable_timeout(remote: RemoteOperationClient, service: FakeService) -> None:
    service.script("GET", PATH, json_response(408, {}), json_response(200, {}))
    assert (await remote.call("GET", PATH)).is_ok()
    assert service.calls("GET", PATH) == 2


@pytest.mark.asyncio
async def test_transport_failure_becomes_network_error(remote: RemoteOperationClient, service: FakeService) -> None:
    service.script("GET", PATH, httpx.ConnectError("connection refused"))
    error = (await remote.call("GET", PATH)).unwrap_err()
    assert isinstance(error, RetriesExhaustedError)
    assert isinstance(error.cause, NetworkError)
    assert "connection refused" in error.cause.message


@pytest.mark.asyncio
async def test_timeout_becomes_network_error_with_timeout_code(
    remote: RemoteOperationClient, service: FakeService,
) -> None:
    service.script("GET", PATH, httpx.ReadTimeout("read timed out"), json_response(200, {}))
    assert (await remote.call("GET", PATH)).is_ok()

    transport = HttpTransport(BASE_URL, "k", transport=FakeService().script(
        "GET", PATH, httpx.ReadTimeout("slow")).transport())
    raw = await transport.request("GET", PATH)
    assert raw.unwrap_err().code is ErrorCode.TIMEOUT


@pytest.mark.asyncio
async def test_breaker_opens_and_fails_fast(service: FakeService) -> None:
    breaker = CircuitBreaker(failure_threshold=2, reset_timeout=30.0, trips_on=is_upstream_fault)
    client = RemoteOperationClient(
        HttpTransport(BASE_URL, "k", transport=service.transport()),
        executor=RetryExecutor(FAST_POLICY), breaker=breaker,
    )
    service.script("GET", PATH, json_response(503, {}))

    await client.call("GET", PATH)
    await client.call("GET", PATH)
    assert breaker.state is CircuitState.OPEN
    sent = len(service.requests)

    error = (await client.call("GET", PATH)).unwrap_err()
    assert isinstance(error, CircuitOpenError)
    assert len(service.requests) == sent


@pytest.mark.asyncio
async def test_cancelled_call_sends_nothing(remote: RemoteOperationClient, service: FakeService) -> None:
    token = CancelToken()
    token.cancel()
    service.script("GET", PATH, json_response(200, {}))
    result = await remote.call("GET", PATH, cancel=token)
    assert result.unwrap_err().code is ErrorCode.CANCELLED
    assert service.requests == []
    assert remote.breaker.consecutive_failures == 0


@pytest.mark.asyncio
async def test_transport_without_api_key_sends_no_authorization(service: FakeService) -> None:
    service.script("GET", PATH, json_response(200, {}))
    async with HttpTransport(BASE_URL, None, transport=service.transport()) as transport:
        await transport.request("GET", PATH)
    assert "Authorization" not in service.requests[0].headers
