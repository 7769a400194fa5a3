"""Redis telemetry backend — SETEX for values, PUBLISH for change events."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Mapping
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from cronwire.telemetry.base import (
    LIVE_DATA_CHANNEL,
    LIVE_DATA_TTL_SECONDS,
    LIVE_KEY_PREFIX,
    encode_live_data,
    encode_update,
)

logger = logging.getLogger(__name__)


def _decode(key: str, raw: str | None) -> Any | None:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("Ignoring non-JSON telemetry value at %s", key)
        return None


class RedisTelemetryStore:
    """Telemetry store on a Redis server.

    Read and write failures after startup are logged and degrade to empty
    results / dropped writes; only :meth:`connect` raises.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        ttl_seconds: int = LIVE_DATA_TTL_SECONDS,
        client: aioredis.Redis | None = None,
    ) -> None:
        self._host = host
        self._port = port
        self._ttl = ttl_seconds
        self._client = client or aioredis.Redis(host=host, port=port, decode_responses=True)

    async def connect(self) -> None:
        await self._client.ping()
        logger.info("Connected to Redis at %s:%d", self._host, self._port)

    async def close(self) -> None:
        try:
            await self._client.aclose()
        except RedisError as exc:
            logger.warning("Error closing Redis connection: %s", exc)
        logger.info("Redis connection closed")

    async def set_live_data(self, key: str, data: Mapping[str, Any]) -> None:
        payload = encode_live_data(data)
        try:
            await self._client.set(key, payload, ex=self._ttl)
            await self._client.publish(LIVE_DATA_CHANNEL, encode_update(key, payload))
        except RedisError as exc:
            logger.warning("Dropping telemetry write to %s: %s", key, exc)

    async def get_live_data(self, key: str) -> Any | None:
        try:
            raw = await self._client.get(key)
        except RedisError as exc:
            logger.warning("Telemetry read of %s failed: %s", key, exc)
            return None
        return _decode(key, raw)

    async def get_all_live_data(self) -> dict[str, Any]:
        try:
            keys = [key async for key in self._client.scan_iter(match=f"{LIVE_KEY_PREFIX}*")]
            values = await self._client.mget(keys) if keys else []
        except RedisError as exc:
            logger.warning("Telemetry snapshot failed: %s", exc)
            return {}

        result: dict[str, Any] = {}
        for key, raw in zip(keys, values):
            decoded = _decode(key, raw)
            if decoded is not None:
                result[key] = decoded
        return result

    async def subscribe(self) -> AsyncIterator[tuple[str, str]]:
        pubsub = self._client.pubsub(ignore_subscribe_messages=True)
        await pubsub.subscribe(LIVE_DATA_CHANNEL)
        try:
            async for message in pubsub.listen():
                if message.get("type") == "message":
                    yield message["channel"], message["data"]
        finally:
            await pubsub.aclose()
