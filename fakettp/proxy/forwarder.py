"""Forwarding of un-hyjacked requests to the backend.

The Dispatcher only decides; moving bytes to and from the backend is the job
of a ``Forwarder``. Production uses ``HttpxForwarder`` over the shared
``httpx.AsyncClient``; tests inject their own.

Failure mode separation:
  - httpx.TransportError (connect refused, timeout, protocol error) → HTTP 502.
  - httpx.InvalidURL (bad proxy_host) → HTTP 500, a configuration error.
  - Backend 4xx/5xx → relayed as-is. No retries.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import httpx
from fastapi import Request, Response
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.background import BackgroundTask

from fakettp.constants import (
    DEFAULT_PROXY_SCHEME,
    POOL_KEEPALIVE_EXPIRY,
    POOL_MAX_CONNECTIONS,
    POOL_MAX_KEEPALIVE,
    PROXY_TIMEOUT,
)
from fakettp.proxy.headers import build_client_response_headers, build_upstream_headers
from fakettp.utils.logger import get_logger

logger = get_logger(__name__)

_SCHEME_SEPARATOR: str = "://"


# ─── Target ───────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ProxyTarget:
    """Where forwarded requests go."""

    scheme: str
    host: str
    port: int

    @classmethod
    def from_config(cls, proxy_host: str, proxy_port: int) -> "ProxyTarget":
        """Split ``proxy_host`` on ``"://"``; a bare host means ``http``.

        ``"https://api.local"`` → (https, api.local); ``"api.local"`` → (http, api.local).
        """
        parts = proxy_host.split(_SCHEME_SEPARATOR)
        if len(parts) == 1:
            return cls(scheme=DEFAULT_PROXY_SCHEME, host=parts[0], port=proxy_port)
        return cls(scheme=parts[0], host=parts[1], port=proxy_port)

    @property
    def base_url(self) -> str:
        return f"{self.scheme}://{self.host}:{self.port}"


def request_target(request: Request) -> str:
    """The raw request target: path exactly as sent plus the raw query string."""
    raw_path: bytes = request.scope.get("raw_path") or request.scope["path"].encode("utf-8")
    target = raw_path.decode("latin-1")
    query: bytes = request.scope.get("query_string", b"")
    if query:
        target += "?" + query.decode("latin-1")
    return target


# ─── Collaborator interface ───────────────────────────────────────────────────


class Forwarder(Protocol):
    async def forward(self, request: Request, body: bytes, target: ProxyTarget) -> Response:
        """Send ``request`` (with its already-buffered ``body``) to ``target``."""
        ...


def build_upstream_unavailable_response(reason: str = "") -> JSONResponse:
    """HTTP 502 for a backend that could not be reached."""
    return JSONResponse(
        status_code=502,
        content={
            "error": {
                "message": "Proxy backend unavailable",
                "code": "upstream_unavailable",
                "detail": reason if reason else None,
            }
        },
    )


def create_http_client() -> httpx.AsyncClient:
    """Create the shared httpx.AsyncClient.

    Created once at lifespan startup and stored in app.state.http_client;
    never instantiated per request.
    """
    return httpx.AsyncClient(
        limits=httpx.Limits(
            max_connections=POOL_MAX_CONNECTIONS,
            max_keepalive_connections=POOL_MAX_KEEPALIVE,
            keepalive_expiry=POOL_KEEPALIVE_EXPIRY,
        ),
        timeout=httpx.Timeout(PROXY_TIMEOUT),
        follow_redirects=False,  # 3xx goes back to the client untouched
    )


class HttpxForwarder:
    """Reverse-proxy a request over a shared httpx.AsyncClient.

    The body is forwarded as the raw buffered bytes; the backend response is
    streamed back byte for byte (content-encoding untouched).
    """

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def forward(self, request: Request, body: bytes, target: ProxyTarget) -> Response:
        upstream_url = target.base_url + request_target(request)
        client_host = request.client.host if request.client else None

        try:
            upstream_request = self._client.build_request(
                method=request.method,
                url=upstream_url,
                headers=build_upstream_headers(request.headers.items(), client_host),
                content=body,
            )
            upstream_response = await self._client.send(upstream_request, stream=True)
        except httpx.InvalidURL as exc:
            logger.error("invalid_proxy_url", upstream_url=upstream_url, error=str(exc))
            return JSONResponse(
                status_code=500,
                content={"error": {"message": "Invalid proxy target", "code": "config_error"}},
            )
        except httpx.TransportError as exc:
            logger.warning(
                "upstream_unavailable",
                upstream_url=upstream_url,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return build_upstream_unavailable_response(reason=type(exc).__name__)

        logger.info(
            "request_proxied",
            method=request.method,
            upstream=upstream_url,
            status_code=upstream_response.status_code,
        )

        return _relay(upstream_response)


def _relay(upstream_response: httpx.Response) -> StreamingResponse:
    """Stream the backend response back; the upstream stream closes afterwards."""
    response = StreamingResponse(
        content=upstream_response.aiter_raw(),
        status_code=upstream_response.status_code,
        background=BackgroundTask(upstream_response.aclose),
    )
    for name, value in build_client_response_headers(upstream_response.headers):
        response.headers.append(name, value)
    return response
