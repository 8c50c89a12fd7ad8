"""fakettp FastAPI application factory + lifespan lifecycle.

Startup sequence:
  1. Config         → app.state.config (given to create_app(), or loaded from
                      the FAKETTP_CONFIG file when started by bare uvicorn)
  2. HTTP client    → app.state.http_client (shared, pooled)
  3. Forwarder      → app.state.forwarder (injected one wins, for tests)
  4. Dispatcher     → app.state.dispatcher
  5. Config watcher → optional task (``-watch``)

Shutdown (reverse): cancel watcher → close HTTP client.

Run via ``fakettp`` (see run.py) or:
  FAKETTP_CONFIG=fakes.json uvicorn fakettp.main:app --host 0.0.0.0 --port 5000
"""

from __future__ import annotations

import asyncio
import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from fakettp.config import Config, Overrides, load_config
from fakettp.config_watcher import watch_config
from fakettp.constants import CONFIG_ENV_VAR
from fakettp.proxy.dispatcher import Dispatcher
from fakettp.proxy.engine import routes as engine_routes
from fakettp.proxy.forwarder import Forwarder, HttpxForwarder, create_http_client
from fakettp.utils.logger import get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    logger.info("fakettp starting up...")

    config: Optional[Config] = app.state.config
    if config is None:
        # load_config() raises SystemExit on a bad file, before anything is served
        config = load_config(os.environ.get(CONFIG_ENV_VAR), app.state.overrides)
        app.state.config = config

    http_client: httpx.AsyncClient = create_http_client()
    app.state.http_client = http_client

    forwarder: Forwarder = app.state.forwarder or HttpxForwarder(http_client)
    app.state.forwarder = forwarder
    app.state.dispatcher = Dispatcher(config, forwarder)

    watcher_task: asyncio.Task[None] | None = None
    if app.state.watch_path:
        watcher_task = asyncio.create_task(
            watch_config(app, app.state.watch_path, app.state.overrides)
        )

    logger.info(
        "fakettp ready",
        port=config.port,
        proxy=app.state.dispatcher.target.base_url,
        fakes=len(config.fakes),
    )

    yield

    logger.info("fakettp shutting down...")

    if watcher_task is not None and not watcher_task.done():
        watcher_task.cancel()
        try:
            await watcher_task
        except asyncio.CancelledError:
            pass

    try:
        await http_client.aclose()
    except Exception as exc:  # noqa: BLE001
        logger.warning("HTTP client close error (non-fatal)", error=str(exc))

    logger.info("fakettp shutdown complete")


def create_app(
    config: Optional[Config] = None,
    forwarder: Optional[Forwarder] = None,
    watch_path: Optional[str] = None,
    overrides: Optional[Overrides] = None,
) -> FastAPI:
    """Create the fakettp application.

    Args:
        config:     Effective Config. None → loaded from FAKETTP_CONFIG at startup.
        forwarder:  Forwarding collaborator. None → HttpxForwarder over the shared client.
        watch_path: Rule file to hot-reload, if any.
        overrides:  Command-line overrides, re-applied on every reload.
    """
    application = FastAPI(
        title="fakettp",
        description="Fake or forward HTTP requests per configured rules",
        version="1.0.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    application.state.config = config
    application.state.forwarder = forwarder
    application.state.watch_path = watch_path
    application.state.overrides = overrides or Overrides()

    application.router.routes.extend(engine_routes)

    @application.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.error(
            "Unhandled exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
        )
        return JSONResponse(
            status_code=500, content={"error": "Internal server error"}
        )

    return application


# Module-level instance for `uvicorn fakettp.main:app`
app = create_app()
