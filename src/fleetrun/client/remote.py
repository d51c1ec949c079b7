"""Remote operation client: one resilient call to the runs API.

Every call is composed as::

    breaker.call(lambda: executor.execute(raw_call, policy, cancel))

so retries happen inside a single breaker-permitted window and a call that
exhausts its retries counts as one breaker failure. ``raw_call`` sends the
request and classifies the response status before retry or breaker see it:

- accepted status → Ok(response)
- 5xx, 408 → ServerError; 429 → RateLimitError (both retryable). For these
  statuses the status wins over an explicit body code: a 503 whose body says
  INVALID_API_KEY is still a retryable ServerError. The one exception is a
  429 whose body says NO_RUNS_REMAINING, which stays a fatal QuotaError.
- any other status → the typed error parsed from the body (not retryable)

Non-retryable errors come back unwrapped; the executor's PermanentError is
an internal signal only.
"""

from __future__ import annotations

from collections.abc import Collection
from typing import TYPE_CHECKING, TypeVar

import httpx
import orjson
from pydantic import BaseModel, ValidationError

from fleetrun.foundation.errors import (
    ApiError,
    Err,
    ErrorCode,
    Ok,
    PermanentError,
    QuotaError,
    RateLimitError,
    RemoteError,
    Result,
    ServerError,
    is_upstream_fault,
    parse_api_error,
)
from fleetrun.runtime.observability import get_logger
from fleetrun.runtime.resilience import CircuitBreaker
from fleetrun.runtime.retry import RetryExecutor

if TYPE_CHECKING:
    from fleetrun.foundation.config import FleetrunSettings, UrlSettings
    from fleetrun.foundation.errors import JsonDict
    from fleetrun.runtime.concurrency import CancelToken
    from fleetrun.runtime.retry import RetryPolicy

    from .transport import HttpTransport

M = TypeVar("M", bound=BaseModel)

log = get_logger("fleetrun.remote")


class RemoteOperationClient:
    """Retry and circuit breaking around an HttpTransport.

    Args:
        transport: Sends the request and maps transport failures
        executor: Retry executor (its policy is the default for every call)
        breaker: Shared breaker; defaults to one counting upstream faults only
        urls: Dashboard URLs for error hints (defaults to global settings)

    Example:
        >>> client = RemoteOperationClient(HttpTransport(base_url, api_key))
        >>> result = await client.call("GET", bulk_run_url("batch-123"))
    """

    __slots__ = ("_transport", "_executor", "_breaker", "_urls")

    def __init__(
        self,
        transport: HttpTransport,
        *,
        executor: RetryExecutor | None = None,
        breaker: CircuitBreaker | None = None,
        urls: UrlSettings | None = None,
    ) -> None:
        self._transport = transport
        self._executor = executor or RetryExecutor()
        self._breaker = breaker or CircuitBreaker(trips_on=is_upstream_fault)
        self._urls = urls

    @classmethod
    def from_settings(cls, transport: HttpTransport, settings: FleetrunSettings) -> RemoteOperationClient:
        return cls(
            transport,
            executor=RetryExecutor(settings.retry.to_policy()),
            breaker=CircuitBreaker.from_settings(settings.breaker, trips_on=is_upstream_fault),
            urls=settings.urls,
        )

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    @property
    def executor(self) -> RetryExecutor:
        return self._executor

    async def call(
        self,
        method: str,
        path: str,
        *,
        body: JsonDict | None = None,
        accept: Collection[int] = (200,),
        policy: RetryPolicy | None = None,
        cancel: CancelToken | None = None,
        timeout: float | None = None,
    ) -> Result[httpx.Response, RemoteError]:
        """Send one logical request; returns the response when its status is in ``accept``."""

        async def raw_call() -> Result[httpx.Response, RemoteError]:
            sent = await self._transport.request(method, path, body=body, timeout=timeout)
            return sent.flat_map(lambda response: self._classify(response, accept))

        result = await self._breaker.call(lambda: self._executor.execute(raw_call, policy, cancel))
        if result.is_err():
            log.debug("call failed", method=method, path=path, error=repr(result.unwrap_err()))
        return result.map_err(_unwrap_permanent)

    def _classify(self, response: httpx.Response, accept: Collection[int]) -> Result[httpx.Response, RemoteError]:
        status = response.status_code
        if status in accept:
            return Ok(response)
        error = parse_api_error(status, response.content, urls=self._urls)
        if status == 429 and not error.retryable and not isinstance(error, QuotaError):
            error = RateLimitError(error.message, status_code=status, details=error.details)
        elif (status == 408 or status >= 500) and not error.retryable:
            error = ServerError(error.message, status_code=status, details=error.details,
                                code=ErrorCode.TIMEOUT if status == 408 else None)
        if isinstance(error, RateLimitError) and error.retry_after is None:
            error.retry_after = response.headers.get("retry-after")
        return Err(error)


def _unwrap_permanent(error: RemoteError) -> RemoteError:
    return error.cause if isinstance(error, PermanentError) else error


def decode_json(response: httpx.Response, model: type[M]) -> Result[M, RemoteError]:
    """Validate a JSON response body into ``model``; failures become ApiError(PARSE_ERROR)."""
    try:
        return Ok(model.model_validate(orjson.loads(response.content)))
    except (orjson.JSONDecodeError, ValidationError) as e:
        log.warning("undecodable response", status=response.status_code, model=model.__name__, error=str(e))
        return Err(ApiError(f"could not decode {model.__name__} response: {e}",
                            status_code=response.status_code, code=ErrorCode.PARSE_ERROR))
