"""Config file hot-reload for fakettp (``-watch``).

Watches the rule file with ``watchfiles.awatch()``. On every change the file
is re-read and re-assembled with the same command-line overrides; on success
a fresh Dispatcher replaces ``app.state.dispatcher``, so in-flight requests
finish on the old Config and the next request sees the new one.

Unlike startup, a malformed file here is not fatal: the error is logged and
the prior Config stays in effect.
"""

from __future__ import annotations

import asyncio
import dataclasses

import watchfiles
from fastapi import FastAPI

from fakettp.config import ConfigParseError, DurationParseError, Overrides, assemble
from fakettp.proxy.dispatcher import Dispatcher
from fakettp.utils.logger import get_logger

logger = get_logger(__name__)


def reload_config(app: FastAPI, path: str, overrides: Overrides) -> bool:
    """Re-assemble the config from ``path`` and swap in a new Dispatcher.

    Returns:
        True when the new config is live, False when the prior one was kept.
    """
    try:
        with open(path, "rb") as fh:
            source = fh.read()
        config = assemble(source, overrides)
    except (OSError, ConfigParseError, DurationParseError) as exc:
        logger.error(
            "Config reload failed, keeping prior config",
            path=path,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return False

    previous: Dispatcher = app.state.dispatcher
    config = dataclasses.replace(config, path=path)
    if config.port != previous.config.port:
        logger.warning(
            "port change needs a restart; still listening on the old port",
            listening=previous.config.port,
            configured=config.port,
        )

    app.state.dispatcher = Dispatcher(config, app.state.forwarder)
    logger.info("Config reloaded", path=path, fakes=len(config.fakes))
    return True


async def watch_config(app: FastAPI, path: str, overrides: Overrides) -> None:
    """Reload on every change to ``path``. Runs as a task until cancelled."""
    logger.info("Config file watcher started", path=path)
    try:
        async for _ in watchfiles.awatch(path):
            reload_config(app, path, overrides)
    except asyncio.CancelledError:
        logger.debug("Config file watcher cancelled", path=path)
        raise
