"""HTTP header processing for fakettp.

  - parse_header_line(): splits a configured ``"Name: Value"`` rule header.
  - is_wire_encodable(): whether a header can be written as latin-1 bytes.
  - build_upstream_headers(): request headers to send to the backend.
  - build_client_response_headers(): backend response headers to relay back.

RFC 7230 §6.1: hop-by-hop headers MUST NOT be forwarded by intermediaries.
"""

from __future__ import annotations

from typing import Iterable, Optional

import httpx

# ─── Constants ────────────────────────────────────────────────────────────────

# content-length is recomputed by httpx from content= on the way out and by
# Starlette on the way back. Host is not listed: the inbound Host is forwarded.
HOP_BY_HOP_HEADERS: frozenset[str] = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
        "content-length",
    }
)

_HEADER_SEPARATOR: str = ": "

# ─── Public API ───────────────────────────────────────────────────────────────


def parse_header_line(line: str) -> Optional[tuple[str, str]]:
    """Split a ``"Name: Value"`` rule header.

    The line must split on ``": "`` into exactly two non-empty parts, so
    ``"Cache-Control: max-age=3600"`` is accepted while ``"Broken"``,
    ``"Name:"`` and ``"A: b: c"`` are not.

    Returns:
        ``(name, value)``, or None when the line is malformed.
    """
    parts = line.split(_HEADER_SEPARATOR)
    if len(parts) != 2 or not parts[0] or not parts[1]:
        return None
    return parts[0], parts[1]


def is_wire_encodable(name: str, value: str) -> bool:
    """True when both parts can be written as latin-1 header bytes."""
    try:
        name.encode("latin-1")
        value.encode("latin-1")
    except UnicodeEncodeError:
        return False
    return True


def build_upstream_headers(
    request_headers: Iterable[tuple[str, str]],
    client_host: Optional[str] = None,
) -> list[tuple[str, str]]:
    """Build the header list to send to the backend.

    Rules applied (in order):
      1. Strip hop-by-hop headers.
      2. Forward everything else unchanged: Host, repeated headers and a
         lone ``X-Return-Delay`` included.
      3. Append the client address to ``X-Forwarded-For``.

    Args:
        request_headers: ``request.headers.items()`` of the inbound request.
        client_host:     Peer address of the inbound connection, if known.
    """
    headers: list[tuple[str, str]] = []
    forwarded_for: Optional[str] = None

    for name, value in request_headers:
        lower_name = name.lower()
        if lower_name in HOP_BY_HOP_HEADERS:
            continue
        if lower_name == "x-forwarded-for":
            forwarded_for = value if forwarded_for is None else f"{forwarded_for}, {value}"
            continue
        headers.append((name, value))

    if client_host:
        forwarded_for = client_host if forwarded_for is None else f"{forwarded_for}, {client_host}"
    if forwarded_for is not None:
        headers.append(("X-Forwarded-For", forwarded_for))

    return headers


def build_client_response_headers(
    upstream_headers: httpx.Headers,
) -> list[tuple[str, str]]:
    """Relay backend response headers, minus hop-by-hop ones.

    Returned as a list so repeated headers (``Set-Cookie``) survive.
    """
    return [
        (name, value)
        for name, value in upstream_headers.multi_items()
        if name.lower() not in HOP_BY_HOP_HEADERS
    ]
