"""Shared fixtures: a scripted fake of the runs API and quiet logging."""

from __future__ import annotations

from collections import defaultdict, deque
from collections.abc import Iterator

import httpx
import orjson
import pytest

from fleetrun.client import HttpTransport, RemoteOperationClient
from fleetrun.foundation.config import UrlSettings, clear_settings_cache
from fleetrun.foundation.errors import is_upstream_fault
from fleetrun.runtime.observability import CollectingRenderer, use_renderer
from fleetrun.runtime.resilience import CircuitBreaker
from fleetrun.runtime.retry import RetryExecutor, RetryPolicy

BASE_URL = "https://api.fleetrun.test"
FAST_POLICY = RetryPolicy(max_attempts=3, initial_delay=0.001, max_delay=0.01, multiplier=2.0, jitter=0.1)


def json_response(status: int, body: object) -> httpx.Response:
    return httpx.Response(status, content=orjson.dumps(body), headers={"Content-Type": "application/json"})


class FakeService:
    """Scripted responses per (method, path). The last scripted response repeats."""

    def __init__(self) -> None:
        self._routes: dict[tuple[str, str], deque[httpx.Response | Exception]] = defaultdict(deque)
        self.requests: list[httpx.Request] = []

    def script(self, method: str, path: str, *responses: httpx.Response | Exception) -> FakeService:
        self._routes[(method, path)].extend(responses)
        return self

    def calls(self, method: str, path: str) -> int:
        return sum(1 for r in self.requests if r.method == method and r.url.path == path)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self._routes.get((request.method, request.url.path))
        if not queue:
            return json_response(404, {"error": "NOT_FOUND", "message": f"no route {request.method} {request.url.path}"})
        item = queue.popleft() if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture(autouse=True)
def captured_logs() -> CollectingRenderer:
    """Collect log entries instead of printing them."""
    renderer = CollectingRenderer()
    use_renderer(renderer, "DEBUG")
    return renderer


@pytest.fixture(autouse=True)
def fresh_settings() -> Iterator[None]:
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def service() -> FakeService:
    return FakeService()


@pytest.fixture
def urls() -> UrlSettings:
    return UrlSettings()


@pytest.fixture
def breaker() -> CircuitBreaker:
    return CircuitBreaker(failure_threshold=5, reset_timeout=30.0, trips_on=is_upstream_fault)


@pytest.fixture
def remote(service: FakeService, breaker: CircuitBreaker, urls: UrlSettings) -> RemoteOperationClient:
    transport = HttpTransport(BASE_URL, "sk-test", transport=service.transport())
    return RemoteOperationClient(transport, executor=RetryExecutor(FAST_POLICY), breaker=breaker, urls=urls)
