"""WebSocket transport for the broadcast hub."""

from __future__ import annotations

import logging

from fastapi import WebSocket
from fastapi.websockets import WebSocketDisconnect, WebSocketState

from cronwire.broadcast.hub import BroadcastHub

logger = logging.getLogger(__name__)

# "Try again later": the hub is shutting down
_CLOSE_UNAVAILABLE = 1013


class WebSocketListener:
    """Adapts a FastAPI WebSocket to the hub's ``Listener`` protocol."""

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket

    @property
    def is_open(self) -> bool:
        return (
            self._websocket.client_state == WebSocketState.CONNECTED
            and self._websocket.application_state == WebSocketState.CONNECTED
        )

    async def send(self, text: str) -> None:
        await self._websocket.send_text(text)


async def telemetry_socket(websocket: WebSocket) -> None:
    """Serve one listener until it disconnects."""
    hub: BroadcastHub = websocket.app.state.hub
    if not hub.accepting:
        await websocket.close(code=_CLOSE_UNAVAILABLE)
        return

    await websocket.accept()
    listener = WebSocketListener(websocket)
    if not await hub.connect(listener):
        if listener.is_open:
            await websocket.close(code=_CLOSE_UNAVAILABLE)
        return

    try:
        while True:
            raw = await websocket.receive_text()
            await hub.handle_message(listener, raw)
    except WebSocketDisconnect:
        logger.debug("WebSocket client went away")
    finally:
        hub.disconnect(listener)
