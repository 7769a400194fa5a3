"""FastAPI application factory."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cronwire import __version__
from cronwire.api import jobs, metrics
from cronwire.api.websocket import telemetry_socket

if TYPE_CHECKING:
    from cronwire.broadcast.hub import BroadcastHub
    from cronwire.config.settings import Settings
    from cronwire.jobs.registry import JobRegistry
    from cronwire.scheduler.cron_scheduler import CronScheduler
    from cronwire.telemetry.base import TelemetryStore

logger = logging.getLogger(__name__)


def create_app(
    registry: JobRegistry,
    store: TelemetryStore,
    hub: BroadcastHub,
    settings: Settings | None = None,
    scheduler: CronScheduler | None = None,
) -> FastAPI:
    """Wire the registry, telemetry store and hub into an ASGI app.

    Startup connects the store (a failure aborts startup) and starts the
    hub, then starts *scheduler* when one is given. Shutdown stops every
    trigger, lets in-flight executions finish, then closes the hub, which
    stops accepting listeners before releasing the store.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await store.connect()
        await hub.start()
        if scheduler is not None:
            scheduler.start()
        logger.info("API ready")
        try:
            yield
        finally:
            if scheduler is not None:
                registry.close()
                await asyncio.to_thread(scheduler.shutdown)
            await hub.close()

    app = FastAPI(title="cronwire", version=__version__, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins if settings else ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.registry = registry
    app.state.store = store
    app.state.hub = hub

    app.include_router(jobs.router)
    app.include_router(metrics.router)
    app.add_api_websocket_route("/", telemetry_socket)

    @app.get("/health")
    async def health():
        return {"status": "OK", "timestamp": datetime.now(timezone.utc).isoformat()}

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "message": str(exc)},
        )

    return app
