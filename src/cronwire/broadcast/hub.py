"""Broadcast hub — fans telemetry changes out to connected listeners.

The hub never broadcasts its own heartbeat directly: the heartbeat is
written to the telemetry store and comes back through the subscription
like any externally written reading, so both travel the same path.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from cronwire.telemetry.base import TelemetryStore

logger = logging.getLogger(__name__)

HEARTBEAT_KEY = "live:metrics"


class Listener(Protocol):
    """A connected client the hub can push text frames to."""

    @property
    def is_open(self) -> bool:
        ...

    async def send(self, text: str) -> None:
        ...


def sample_metrics() -> dict[str, Any]:
    """A synthetic reading used as the liveness heartbeat."""
    return {
        "cpu": random.uniform(0, 100),
        "memory": random.uniform(0, 100),
        "requests": random.randrange(1000),
    }


class BroadcastHub:
    """Tracks listeners and relays the store's subscription stream to them."""

    def __init__(
        self,
        store: TelemetryStore,
        heartbeat_interval: float = 1.0,
        sampler: Callable[[], dict[str, Any]] = sample_metrics,
        retry_delay: float = 1.0,
    ) -> None:
        self._store = store
        self._heartbeat_interval = heartbeat_interval
        self._sampler = sampler
        self._retry_delay = retry_delay
        self._listeners: set[Listener] = set()
        self._tasks: list[asyncio.Task[None]] = []
        self._accepting = False

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    @property
    def accepting(self) -> bool:
        return self._accepting

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the relay and heartbeat tasks and accept listeners."""
        self._accepting = True
        self._tasks = [
            asyncio.create_task(self._relay(), name="telemetry-relay"),
            asyncio.create_task(self._heartbeat(), name="telemetry-heartbeat"),
        ]
        logger.info("Broadcast hub started (heartbeat every %gs)", self._heartbeat_interval)

    async def close(self) -> None:
        """Stop accepting listeners, stop background tasks, release the store."""
        self._accepting = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        self._listeners.clear()
        await self._store.close()
        logger.info("Broadcast hub closed")

    async def _relay(self) -> None:
        while True:
            try:
                async for channel, message in self._store.subscribe():
                    await self._forward(channel, message)
                return  # subscription ended because the store closed
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(
                    "Telemetry subscription failed, retrying in %gs", self._retry_delay
                )
                await asyncio.sleep(self._retry_delay)

    async def _forward(self, channel: str, message: str) -> None:
        try:
            data = json.loads(message)
        except ValueError:
            logger.error("Error parsing telemetry message: %r", message)
            return
        await self.broadcast({"type": "live-data-update", "channel": channel, "data": data})

    async def _heartbeat(self) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_interval)
            try:
                await self._store.set_live_data(HEARTBEAT_KEY, self._sampler())
            except Exception:
                logger.exception("Error writing heartbeat telemetry")

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    async def connect(self, listener: Listener) -> bool:
        """Send the initial snapshot, then start delivering updates.

        Returns False (and registers nothing) once the hub is closing or
        when the snapshot cannot be delivered.
        """
        if not self._accepting:
            return False
        try:
            snapshot = await self._store.get_all_live_data()
        except Exception:
            logger.exception("Error loading telemetry snapshot")
            snapshot = {}
        try:
            await listener.send(json.dumps({"type": "initial-data", "data": snapshot}))
        except Exception as exc:
            logger.warning("Error sending initial data: %s", exc)
            return False
        if not self._accepting:
            return False

        self._listeners.add(listener)
        logger.info("Listener connected (%d open)", len(self._listeners))
        return True

    def disconnect(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.discard(listener)
            logger.info("Listener disconnected (%d open)", len(self._listeners))

    async def handle_message(self, listener: Listener, raw: str | bytes) -> None:
        """Answer one client message."""
        try:
            message = json.loads(raw)
            if not isinstance(message, dict):
                raise ValueError("message is not an object")
        except ValueError:
            await self._reply(listener, {"error": "Invalid message format"})
            return

        message_type = message.get("type")
        if message_type == "get-live-data":
            key = message.get("key")
            data = await self._store.get_live_data(key) if isinstance(key, str) else None
            await self._reply(listener, {"type": "live-data-response", "key": key, "data": data})
        elif message_type == "subscribe":
            await self._reply(listener, {"type": "subscribed", "channel": message.get("channel")})
        else:
            await self._reply(listener, {"error": "Unknown message type"})

    async def _reply(self, listener: Listener, message: dict[str, Any]) -> None:
        try:
            await listener.send(json.dumps(message))
        except Exception as exc:
            logger.warning("Dropping listener after failed reply: %s", exc)
            self.disconnect(listener)

    async def broadcast(self, message: dict[str, Any]) -> int:
        """Send *message* to every open listener concurrently; return how many got it.

        A slow listener does not hold up the others. Closed or failing
        listeners are pruned on the way.
        """
        text = json.dumps(message)
        targets = []
        for listener in list(self._listeners):
            if listener.is_open:
                targets.append(listener)
            else:
                self._listeners.discard(listener)
        if not targets:
            return 0

        results = await asyncio.gather(
            *(listener.send(text) for listener in targets), return_exceptions=True
        )
        delivered = 0
        for listener, outcome in zip(targets, results):
            if isinstance(outcome, BaseException):
                logger.warning("Dropping listener after failed send: %s", outcome)
                self._listeners.discard(listener)
            else:
                delivered += 1
        return delivered
