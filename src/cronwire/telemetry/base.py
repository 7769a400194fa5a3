"""Telemetry store protocol — the contract every backend implements."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Mapping
from datetime import datetime, timezone
from typing import Any, Protocol

# Every live key lives under this prefix
LIVE_KEY_PREFIX = "live:"
# Every write is announced on this pub/sub channel
LIVE_DATA_CHANNEL = "live-data"
# Values expire after five minutes
LIVE_DATA_TTL_SECONDS = 300


def live_key(name: str) -> str:
    """Namespace *name* under :data:`LIVE_KEY_PREFIX` (idempotent)."""
    return name if name.startswith(LIVE_KEY_PREFIX) else f"{LIVE_KEY_PREFIX}{name}"


def encode_live_data(data: Mapping[str, Any]) -> str:
    """Serialize a reading, stamping it with the current UTC time."""
    stamped = {**data, "timestamp": datetime.now(timezone.utc).isoformat()}
    return json.dumps(stamped)


def encode_update(key: str, payload: str) -> str:
    """Pub/sub message announcing that *key* now holds *payload*."""
    return json.dumps({"key": key, "data": payload})


class TelemetryStore(Protocol):
    """Key/value store with expiry plus a publish/subscribe channel."""

    async def connect(self) -> None:
        """Open the connection. Failures propagate: startup must abort."""
        ...

    async def close(self) -> None:
        """Release the connection and end open subscriptions."""
        ...

    async def set_live_data(self, key: str, data: Mapping[str, Any]) -> None:
        """Store *data* under *key* with the TTL and publish the change."""
        ...

    async def get_live_data(self, key: str) -> Any | None:
        """Return the decoded value for *key*, or None."""
        ...

    async def get_all_live_data(self) -> dict[str, Any]:
        """Return every live key with its decoded value."""
        ...

    def subscribe(self) -> AsyncIterator[tuple[str, str]]:
        """Yield ``(channel, message)`` for every published change."""
        ...
