"""Telemetry store — live key/value readings with pub/sub fan-out."""

from __future__ import annotations

from typing import TYPE_CHECKING

from cronwire.telemetry.base import (
    LIVE_DATA_CHANNEL,
    LIVE_DATA_TTL_SECONDS,
    LIVE_KEY_PREFIX,
    TelemetryStore,
    live_key,
)
from cronwire.telemetry.memory_backend import MemoryTelemetryStore

if TYPE_CHECKING:
    from cronwire.config.settings import Settings

__all__ = [
    "LIVE_DATA_CHANNEL",
    "LIVE_DATA_TTL_SECONDS",
    "LIVE_KEY_PREFIX",
    "MemoryTelemetryStore",
    "TelemetryStore",
    "create_telemetry_store",
    "live_key",
]


def create_telemetry_store(settings: Settings) -> TelemetryStore:
    """Build the backend selected by ``TELEMETRY_BACKEND``."""
    if settings.telemetry_backend == "memory":
        return MemoryTelemetryStore()

    from cronwire.telemetry.redis_backend import RedisTelemetryStore

    return RedisTelemetryStore(host=settings.redis_host, port=settings.redis_port)
