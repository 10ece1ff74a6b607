"""
apilink Transport Layer.

Standardized request/response envelopes plus the pluggable transport the
executor dispatches through. HttpxTransport is the production transport;
tests substitute an httpx.MockTransport underneath it.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable
import logging
import time

import httpx

from apilink.integrations.errors import TransportError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Request / Response envelope
# ---------------------------------------------------------------------------

@dataclass
class PreparedRequest:
    """Fully resolved outbound request. Treated as immutable: use ``replace``."""
    method: str
    url: str
    params: dict[str, Any] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    json: Any = None
    data: dict[str, Any] | None = None  # form-encoded body
    timeout: float = 30.0


@dataclass
class IntegrationResponse:
    """Snapshot of an inbound response."""
    status_code: int
    data: Any = None
    headers: dict[str, str] = field(default_factory=dict)
    url: str = ""
    method: str = ""
    elapsed_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def header(self, name: str, default: str | None = None) -> str | None:
        return self.headers.get(name.lower(), default)


@runtime_checkable
class Transport(Protocol):
    """Anything that can perform one HTTP exchange."""

    async def send(self, request: PreparedRequest) -> IntegrationResponse:
        ...

    async def aclose(self) -> None:
        ...


# ---------------------------------------------------------------------------
# httpx transport
# ---------------------------------------------------------------------------

def _error_code(exc: httpx.TransportError) -> str:
    if isinstance(exc, httpx.TimeoutException):
        return "ETIMEDOUT"
    if isinstance(exc, httpx.ConnectError):
        return "ECONNREFUSED"
    if isinstance(exc, (httpx.ReadError, httpx.WriteError, httpx.RemoteProtocolError)):
        return "ECONNRESET"
    return "ENETWORK"


def _decode_body(resp: httpx.Response) -> Any:
    if not resp.content:
        return None
    if resp.headers.get("content-type", "").startswith("application/json"):
        try:
            return resp.json()
        except ValueError:
            # Malformed JSON or a body that is not valid UTF-8
            logger.debug("Response declared JSON but did not parse: %s", resp.url)
    return resp.text


class HttpxTransport:
    """Transport backed by a shared ``httpx.AsyncClient``.

    Pass ``client`` to reuse a pre-configured client (for example one built
    on ``httpx.MockTransport``); otherwise one is created and owned here.
    """

    def __init__(self, client: httpx.AsyncClient | None = None):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient()

    async def send(self, request: PreparedRequest) -> IntegrationResponse:
        start = time.perf_counter()
        try:
            resp = await self._client.request(
                method=request.method,
                url=request.url,
                params=request.params or None,
                json=request.json,
                data=request.data,
                headers=request.headers,
                timeout=request.timeout,
            )
        except httpx.TransportError as exc:
            raise TransportError(
                f"{request.method} {request.url} failed: {exc!s}", code=_error_code(exc)
            ) from exc

        return IntegrationResponse(
            status_code=resp.status_code,
            data=_decode_body(resp),
            headers={k.lower(): v for k, v in resp.headers.items()},
            url=str(resp.url),
            method=request.method,
            elapsed_ms=(time.perf_counter() - start) * 1000,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
