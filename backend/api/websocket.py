"""WebSocket fan-out of coordinator events.

A client that joins mid-session first receives a ``state`` event holding the
current coordinator snapshot, then every coordinator event as it happens.
"""

import asyncio
import json
import logging
from typing import Callable

from fastapi import WebSocket

logger = logging.getLogger(__name__)

SnapshotProvider = Callable[[], dict]


def encode_event(event: str, data: dict) -> str:
    return json.dumps({"event": event, "data": data})


class ConnectionManager:
    """Pushes coordinator events to the WebSocket clients of the UI."""

    def __init__(self, snapshot: SnapshotProvider | None = None) -> None:
        self._snapshot = snapshot
        self._clients: list[WebSocket] = []
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            # Snapshot and registration under one lock so no event slips between them
            if self._snapshot is not None:
                await websocket.send_text(encode_event("state", self._snapshot()))
            self._clients.append(websocket)
        logger.info(f"UI client attached ({len(self._clients)} open)")

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            if websocket in self._clients:
                self._clients.remove(websocket)
        logger.info(f"UI client detached ({len(self._clients)} open)")

    async def handle_event(self, event_type: str, data: dict) -> None:
        """Coordinator event callback; clients that fail to receive are dropped."""
        message = encode_event(event_type, data)
        async with self._lock:
            for ws in list(self._clients):
                try:
                    await ws.send_text(message)
                except Exception as e:
                    logger.debug(f"Dropping UI client: {e}")
                    self._clients.remove(ws)
