"""Serve-mode orchestrator — wires scheduler, registry, hub and HTTP API."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import uvicorn

from cronwire.api.app import create_app
from cronwire.broadcast.hub import BroadcastHub
from cronwire.config.defaults import DEFAULT_SEED_JOBS
from cronwire.jobs.executor import CommandRunner
from cronwire.jobs.registry import JobRegistry
from cronwire.scheduler.cron_scheduler import CronScheduler
from cronwire.telemetry import create_telemetry_store

if TYPE_CHECKING:
    from fastapi import FastAPI

    from cronwire.config.settings import Settings

logger = logging.getLogger(__name__)


def build_app(settings: Settings) -> FastAPI:
    """Create every service from *settings* and return the wired app.

    The scheduler is started by the app's lifespan, after the telemetry
    store has connected.
    """
    scheduler = CronScheduler(
        timezone=settings.scheduler_timezone,
        max_workers=settings.scheduler_max_workers,
    )
    runner = CommandRunner.from_settings(settings, scheduler)
    registry = JobRegistry(scheduler, runner)

    if settings.seed_jobs_enabled:
        created = registry.seed(DEFAULT_SEED_JOBS)
        logger.info("Seeded %d built-in job(s)", len(created))

    store = create_telemetry_store(settings)
    hub = BroadcastHub(store, heartbeat_interval=settings.heartbeat_interval_seconds)
    return create_app(registry, store, hub, settings=settings, scheduler=scheduler)


def serve(settings: Settings) -> int:
    """Run the API server with live scheduling until SIGINT/SIGTERM.

    This is the entry point for ``python -m cronwire serve``. Returns 1
    when startup fails (e.g. the telemetry store is unreachable).
    """
    app = build_app(settings)
    server = uvicorn.Server(
        uvicorn.Config(
            app,
            host=settings.host,
            port=settings.port,
            log_config=None,
        )
    )

    logger.info("Serve mode starting on %s:%d", settings.host, settings.port)
    server.run()

    if not server.started:
        logger.error("Startup failed, exiting")
        return 1
    logger.info("Serve mode stopped")
    return 0
