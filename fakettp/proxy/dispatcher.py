"""Per-request dispatch for fakettp.

Every request goes through the same three steps, and stops at the first one
that produces a response:

  1. X-Return-* override headers  → synthesized response (rules never consulted)
  2. first matching configured rule → synthesized response
  3. otherwise                     → forwarded to the backend

The request body is buffered once up front so the matcher can inspect it and
the forwarder can still send it unchanged.

Delays:
  - override hyjack and forward both wait the resolved delay: X-Return-Delay
    when it parses to a non-zero duration, else the configured proxy_delay.
  - a rule hyjack waits only the rule's own delay.

The Dispatcher owns one Config for its lifetime. Reconfiguring means building
a new Dispatcher, which also drops the compiled-pattern cache.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Awaitable, Callable

import structlog
from fastapi import Request, Response

from fakettp.config import Config, Fake
from fakettp.constants import DEFAULT_RESPONSE_CODE
from fakettp.proxy.forwarder import Forwarder, ProxyTarget, request_target
from fakettp.proxy.headers import is_wire_encodable, parse_header_line
from fakettp.proxy.overrides import OverrideResult, detect_overrides
from fakettp.rules.matcher import PatternCache, RequestInfo, first_match
from fakettp.utils.durations import format_duration
from fakettp.utils.logger import get_logger
from fakettp.utils.ulid import generate_ulid

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class Dispatcher:
    """Decide, per request, between override hyjack, rule hyjack and forwarding."""

    def __init__(
        self,
        config: Config,
        forwarder: Forwarder,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.config = config
        self.target = ProxyTarget.from_config(config.proxy_host, config.proxy_port)
        self.patterns = PatternCache()
        self._forwarder = forwarder
        self._sleep = sleep

    async def dispatch(self, request: Request) -> Response:
        structlog.contextvars.bind_contextvars(request_id=generate_ulid())
        try:
            return await self._dispatch(request)
        finally:
            structlog.contextvars.unbind_contextvars("request_id")

    async def _dispatch(self, request: Request) -> Response:
        target = request_target(request)
        logger.info("new request", method=request.method, target=target)

        body = await _read_body(request)

        override = detect_overrides(request.headers)
        delay = override.delay or self.config.proxy_delay

        if override.hyjacked:
            return await self._override_response(target, override, delay)

        info = RequestInfo(
            method=request.method,
            path=request.scope["path"],
            full_target=target,
            body=body,
        )
        fake = first_match(info, self.config.fakes, self.patterns)
        if fake is not None:
            return await self._rule_response(fake)

        logger.info("proxying request", target=self.target.base_url)
        await self._wait(delay, "delaying proxy request")
        response = await self._forwarder.forward(request, body, self.target)
        logger.info("proxy request complete")
        return response

    async def _override_response(
        self, target: str, override: OverrideResult, delay: timedelta
    ) -> Response:
        logger.info("hyjacking request", target=target, delay=format_duration(delay))
        response = Response(
            content=override.body,
            status_code=override.code or DEFAULT_RESPONSE_CODE,
        )
        for name, value in override.headers:
            logger.debug("setting header", name=name, value=value)
            response.headers.append(name, value)
        await self._wait(delay)
        logger.info("hyjack X-Return-* request complete")
        return response

    async def _rule_response(self, fake: Fake) -> Response:
        logger.info(
            "hyjacking route",
            route=fake.path or "all paths",
            delay=format_duration(fake.delay),
        )
        await self._wait(fake.delay)

        response = Response(
            content=fake.body.encode("utf-8"),
            status_code=fake.code or DEFAULT_RESPONSE_CODE,
        )
        for line in fake.headers:
            header = parse_header_line(line)
            if header is None:
                logger.warning(
                    "skipping header (need a value on both sides of :)", header=line
                )
                continue
            if not is_wire_encodable(*header):
                logger.warning("skipping header (not latin-1 encodable)", header=line)
                continue
            logger.debug("setting header", name=header[0], value=header[1])
            response.headers.append(*header)

        logger.info("hyjack request complete")
        return response

    async def _wait(self, delay: timedelta, message: str = "") -> None:
        seconds = delay.total_seconds()
        if seconds <= 0:
            return
        if message:
            logger.info(message, delay=format_duration(delay))
        await self._sleep(seconds)


async def _read_body(request: Request) -> bytes:
    """Buffer the whole body; an unreadable body is treated as empty."""
    try:
        return await request.body()
    except Exception as exc:  # noqa: BLE001
        logger.warning("unable to read original request body", error=str(exc))
        return b""
