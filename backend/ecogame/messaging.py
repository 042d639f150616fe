"""WebSocket connection manager for live game updates.

This module tracks connected sockets by connection id and broadcasts
snapshot/status payloads to every connected frontend client.
"""

import asyncio
import logging
import uuid
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)


class ConnectionManager:
    """In-memory fan-out manager keyed by connection id."""

    def __init__(self) -> None:
        self._connections: dict[str, WebSocket] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket) -> str:
        await websocket.accept()
        connection_id = uuid.uuid4().hex
        async with self._lock:
            self._connections[connection_id] = websocket
        return connection_id

    async def disconnect(self, connection_id: str) -> None:
        async with self._lock:
            self._connections.pop(connection_id, None)

    @property
    def count(self) -> int:
        return len(self._connections)

    async def broadcast(self, payload: dict[str, Any]) -> None:
        async with self._lock:
            targets = list(self._connections.items())
        for connection_id, ws in targets:
            try:
                await ws.send_json(payload)
            except (WebSocketDisconnect, RuntimeError, OSError) as exc:
                logger.warning("dropping websocket connection=%s reason=%s", connection_id, type(exc).__name__)
                await self.disconnect(connection_id)
