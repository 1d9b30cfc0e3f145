"""WebSocket connection manager for live event streaming."""

import asyncio
import json
import logging
from typing import Any

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Tracks dashboard WebSocket connections and broadcasts bus events to them."""

    def __init__(self) -> None:
        self._connections: set[WebSocket] = set()
        self._lock = asyncio.Lock()

    async def register(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._connections.add(websocket)
            logger.info("Registered event connection (total: %d)", len(self._connections))

    async def unregister(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._connections.discard(websocket)
            logger.info("Unregistered event connection (total: %d)", len(self._connections))

    @property
    def count(self) -> int:
        return len(self._connections)

    async def broadcast(self, event: dict[str, Any]) -> None:
        """Push an event to every connected client.

        Args:
            event: ``{"type": ..., "payload": {...}}`` as published on the bus.
        """
        async with self._lock:
            sockets = list(self._connections)

        if not sockets:
            logger.debug("No active connections, skipping %s", event.get("type"))
            return

        message = json.dumps(event)
        for ws in sockets:
            try:
                await ws.send_text(message)
            except Exception:  # noqa: BLE001
                # Client disconnected, cleaned up when its handler unregisters
                logger.debug("Failed to send event to client, connection may be closed")


# Singleton instance
connection_manager = ConnectionManager()
