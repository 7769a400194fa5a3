"""In-process telemetry backend — single-node runs and tests."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator, Callable, Mapping
from typing import Any

from cronwire.telemetry.base import (
    LIVE_DATA_CHANNEL,
    LIVE_DATA_TTL_SECONDS,
    LIVE_KEY_PREFIX,
    encode_live_data,
    encode_update,
)

logger = logging.getLogger(__name__)


class MemoryTelemetryStore:
    """Dict-backed store; expired keys are dropped when read."""

    def __init__(
        self,
        ttl_seconds: float = LIVE_DATA_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._values: dict[str, tuple[float, str]] = {}
        self._subscribers: set[asyncio.Queue[tuple[str, str] | None]] = set()
        self._closed = False

    async def connect(self) -> None:
        self._closed = False
        logger.info("Using in-memory telemetry store")

    async def close(self) -> None:
        self._closed = True
        for queue in list(self._subscribers):
            queue.put_nowait(None)

    async def publish(self, channel: str, message: str) -> None:
        for queue in list(self._subscribers):
            queue.put_nowait((channel, message))

    async def set_live_data(self, key: str, data: Mapping[str, Any]) -> None:
        if self._closed:
            logger.warning("Telemetry store closed, dropping write to %s", key)
            return
        payload = encode_live_data(data)
        self._values[key] = (self._clock() + self._ttl, payload)
        await self.publish(LIVE_DATA_CHANNEL, encode_update(key, payload))

    def _read(self, key: str) -> str | None:
        entry = self._values.get(key)
        if entry is None:
            return None
        expires_at, payload = entry
        if expires_at <= self._clock():
            del self._values[key]
            return None
        return payload

    async def get_live_data(self, key: str) -> Any | None:
        payload = self._read(key)
        return json.loads(payload) if payload is not None else None

    async def get_all_live_data(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for key in list(self._values):
            if not key.startswith(LIVE_KEY_PREFIX):
                continue
            payload = self._read(key)
            if payload is not None:
                result[key] = json.loads(payload)
        return result

    async def subscribe(self) -> AsyncIterator[tuple[str, str]]:
        queue: asyncio.Queue[tuple[str, str] | None] = asyncio.Queue()
        self._subscribers.add(queue)
        try:
            while not self._closed:
                item = await queue.get()
                if item is None:
                    return
                yield item
        finally:
            self._subscribers.discard(queue)
