"""HTTP transport over a shared httpx.AsyncClient.

Sends JSON bodies (encoded with orjson) with bearer authentication and
returns the raw ``httpx.Response`` inside a Result. Only transport
failures become errors here (``NetworkError``); status codes are classified
one layer up by the RemoteOperationClient.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Self

import httpx
import orjson
from pydantic import SecretStr

from fleetrun import __version__
from fleetrun.foundation.errors import Err, NetworkError, Ok, RemoteError, Result
from fleetrun.runtime.observability import get_logger

if TYPE_CHECKING:
    from types import TracebackType

    from fleetrun.foundation.config import FleetrunSettings
    from fleetrun.foundation.errors import JsonDict

log = get_logger("fleetrun.transport")


def default_headers(api_key: SecretStr | str | None, user_agent: str | None = None) -> dict[str, str]:
    headers = {
        "Content-Type": "application/json",
        "Accept": "application/json",
        "User-Agent": user_agent or f"fleetrun/{__version__}",
    }
    key = api_key.get_secret_value() if isinstance(api_key, SecretStr) else api_key
    if key:
        headers["Authorization"] = f"Bearer {key}"
    return headers


class HttpTransport:
    """Async JSON-over-HTTP client for the runs API.

    Args:
        base_url: Service root, e.g. ``https://api.fleetrun.dev``
        api_key: Bearer token (omitted from headers when empty)
        timeout: Per-request timeout in seconds
        connect_timeout: Connection establishment timeout
        verify_ssl: TLS certificate verification
        user_agent: Override the default ``fleetrun/<version>``
        transport: httpx transport override (``httpx.MockTransport`` in tests)
    """

    __slots__ = ("_base_url", "_client")

    def __init__(
        self,
        base_url: str,
        api_key: SecretStr | str | None = None,
        *,
        timeout: float = 45 * 60.0,
        connect_timeout: float = 10.0,
        verify_ssl: bool = True,
        user_agent: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=default_headers(api_key, user_agent),
            timeout=httpx.Timeout(timeout, connect=connect_timeout),
            verify=verify_ssl,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: FleetrunSettings, *, transport: httpx.AsyncBaseTransport | None = None) -> Self:
        return cls(
            settings.api_url,
            settings.api_key,
            timeout=settings.http.timeout,
            connect_timeout=settings.http.connect_timeout,
            verify_ssl=settings.http.verify_ssl,
            user_agent=settings.http.user_agent,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    async def request(
        self,
        method: str,
        path: str,
        *,
        body: JsonDict | None = None,
        timeout: float | None = None,
    ) -> Result[httpx.Response, RemoteError]:
        """Send one request. Any HTTP status is Ok; only transport failures are Err."""
        content = orjson.dumps(body) if body is not None else None
        kwargs = {"timeout": timeout} if timeout is not None else {}
        url = f"{self._base_url}{path}"
        try:
            response = await self._client.request(method, path, content=content, **kwargs)
        except httpx.TimeoutException as e:
            log.debug("request timed out", method=method, url=url, error=str(e))
            return Err(NetworkError(f"request timed out: {e}" if str(e) else "request timed out",
                                    operation=f"{method} {path}", url=url, timeout=True))
        except httpx.TransportError as e:
            log.debug("transport error", method=method, url=url, error=str(e), kind=type(e).__name__)
            return Err(NetworkError(str(e) or type(e).__name__, operation=f"{method} {path}", url=url))
        log.debug("response", method=method, url=url, status=response.status_code)
        return Ok(response)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, exc_type: type[BaseException] | None, exc_val: BaseException | None,
                        exc_tb: TracebackType | None) -> None:
        await self.aclose()
