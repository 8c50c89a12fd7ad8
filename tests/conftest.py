"""Root test configuration for fakettp.

Shared helpers:
  - SAMPLE_CONFIG: the two-rule declarative file used across config tests
  - make_request(): builds a Starlette Request without a server
  - FakeForwarder / RecordingSleep: stand-ins injected into the Dispatcher
"""

from __future__ import annotations

from typing import Iterable, Optional

import pytest
from fastapi import Request, Response

from fakettp.proxy.forwarder import ProxyTarget

SAMPLE_CONFIG: bytes = b"""{
    "proxy_host": "apid.docker",
    "proxy_port": 9092,
    "proxy_delay": "3ms",
    "port": 5002,
    "fakes": [
        {
            "hyjack": "/api/settings.json",
            "code": 500
        },
        {
            "hyjack": "/api/functions.json",
            "methods": [
                "GET",
                "POST"
            ],
            "body": "{\\"json\\":true}",
            "code": 201,
            "headers": [
                "Content-Type: application/json",
                "Cache-Control: max-age=3600"
            ],
            "time": "1s15ms"
        }
    ]
}"""


@pytest.fixture(autouse=True)
def no_config_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep a developer's FAKETTP_CONFIG from leaking into tests."""
    monkeypatch.delenv("FAKETTP_CONFIG", raising=False)


def make_request(
    method: str = "GET",
    path: str = "/",
    query: bytes = b"",
    body: bytes = b"",
    headers: Iterable[tuple[str, str]] = (),
    raw_path: Optional[bytes] = None,
) -> Request:
    """Build a Starlette Request whose body can be read once."""
    scope = {
        "type": "http",
        "http_version": "1.1",
        "method": method,
        "scheme": "http",
        "path": path,
        "raw_path": raw_path if raw_path is not None else path.encode("utf-8"),
        "root_path": "",
        "query_string": query,
        "headers": [
            (name.lower().encode("latin-1"), value.encode("latin-1"))
            for name, value in headers
        ],
        "client": ("127.0.0.1", 54321),
        "server": ("testserver", 80),
    }
    sent = False

    async def receive() -> dict:
        nonlocal sent
        if sent:
            return {"type": "http.disconnect"}
        sent = True
        return {"type": "http.request", "body": body, "more_body": False}

    return Request(scope, receive)


class FakeForwarder:
    """Records forwarded requests and answers 200 ``proxied``."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, bytes, ProxyTarget]] = []

    async def forward(self, request: Request, body: bytes, target: ProxyTarget) -> Response:
        self.calls.append((request.method, request.scope["path"], body, target))
        return Response(content=b"proxied", status_code=200)


class RecordingSleep:
    """Async sleep replacement that remembers how long it was asked to wait."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def forwarder() -> FakeForwarder:
    return FakeForwarder()


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()
