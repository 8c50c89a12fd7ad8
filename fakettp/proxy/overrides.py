"""Per-request override detection for fakettp.

A client can force a canned response for one request, whatever the configured
rules say, by sending any of:

  X-Return-Headers  JSON object, header name → list of values
  X-Return-Code     integer status code
  X-Return-Data     literal response body
  X-Return-Delay    duration text ("200ms"), delay before answering

The request is hyjacked when headers, code or data parse successfully. A
signal that fails to parse is logged and drops only its own contribution;
nothing here raises. X-Return-Delay on its own never hyjacks: it only
changes how long the request waits.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Mapping, Optional

import re2

from fakettp.constants import (
    HEADER_RETURN_CODE,
    HEADER_RETURN_DATA,
    HEADER_RETURN_DELAY,
    HEADER_RETURN_HEADERS,
)
from fakettp.proxy.headers import is_wire_encodable
from fakettp.utils.durations import DurationParseError, parse_duration
from fakettp.utils.logger import get_logger

logger = get_logger(__name__)

_STATUS_CODE = re2.compile(r"[+-]?[0-9]+")


@dataclass(frozen=True)
class OverrideResult:
    """What the override headers asked for.

    code is None when X-Return-Code was absent or unusable; delay is zero
    when X-Return-Delay was absent or unusable.
    """

    hyjacked: bool = False
    code: Optional[int] = None
    body: bytes = b""
    headers: tuple[tuple[str, str], ...] = ()
    delay: timedelta = field(default=timedelta(0))


def _parse_delay(value: str) -> timedelta:
    try:
        return parse_duration(value)
    except DurationParseError as exc:
        logger.warning("cannot set delay", header=HEADER_RETURN_DELAY, value=value, error=str(exc))
        return timedelta(0)


def _parse_headers(value: str) -> Optional[tuple[tuple[str, str], ...]]:
    try:
        raw = json.loads(value)
    except json.JSONDecodeError as exc:
        logger.warning("unable to read X-Return-Headers", value=value, error=str(exc))
        return None

    if not isinstance(raw, dict):
        logger.warning("unable to read X-Return-Headers", value=value, error="expected a JSON object")
        return None

    pairs: list[tuple[str, str]] = []
    for name, values in raw.items():
        if not isinstance(values, list) or not all(isinstance(v, str) for v in values):
            logger.warning(
                "unable to read X-Return-Headers",
                value=value,
                error=f"values for {name!r} must be a list of strings",
            )
            return None
        for v in values:
            if not is_wire_encodable(name, v):
                logger.warning(
                    "unable to read X-Return-Headers",
                    value=value,
                    error=f"header {name!r} is not latin-1 encodable",
                )
                return None
            pairs.append((name, v))
    return tuple(pairs)


def _parse_code(value: str) -> Optional[int]:
    stripped = value.strip()
    if _STATUS_CODE.fullmatch(stripped) is None:
        logger.warning("unable to read X-Return-Code", value=value, error="not an integer")
        return None
    code = int(stripped)
    if not 100 <= code <= 999:
        logger.warning("unable to read X-Return-Code", value=value, error="status out of range")
        return None
    return code


def detect_overrides(headers: Mapping[str, str]) -> OverrideResult:
    """Inspect the X-Return-* headers of one request.

    Args:
        headers: Case-insensitive request headers (Starlette ``request.headers``).
    """
    delay = timedelta(0)
    hyjacked = False
    code: Optional[int] = None
    body = b""
    response_headers: tuple[tuple[str, str], ...] = ()

    raw_delay = headers.get(HEADER_RETURN_DELAY)
    if raw_delay:
        delay = _parse_delay(raw_delay)

    raw_headers = headers.get(HEADER_RETURN_HEADERS)
    if raw_headers:
        parsed = _parse_headers(raw_headers)
        if parsed is not None:
            hyjacked = True
            response_headers = parsed

    raw_code = headers.get(HEADER_RETURN_CODE)
    if raw_code:
        code = _parse_code(raw_code)
        if code is not None:
            hyjacked = True

    raw_data = headers.get(HEADER_RETURN_DATA)
    if raw_data:
        hyjacked = True
        body = raw_data.encode("latin-1")

    return OverrideResult(
        hyjacked=hyjacked,
        code=code,
        body=body,
        headers=response_headers,
        delay=delay,
    )
