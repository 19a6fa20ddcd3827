import asyncio
import logging
from typing import Any, Set
from fastapi import WebSocket

logger = logging.getLogger(__name__)


class Broadcaster:
    """Live WebSocket clients; delivery is best effort."""

    def __init__(self):
        self.clients: Set[WebSocket] = set()
        self._lock = asyncio.Lock()

    async def connect(self, ws: WebSocket):
        await ws.accept()
        async with self._lock:
            self.clients.add(ws)
        logger.info("Web client connected (%d live)", len(self.clients))

    async def disconnect(self, ws: WebSocket):
        async with self._lock:
            self.clients.discard(ws)

    async def broadcast_json(self, payload: dict):
        stale = []
        for ws in list(self.clients):
            try:
                await ws.send_json(payload)
            except Exception:
                stale.append(ws)
        for ws in stale:
            await self.disconnect(ws)
        if stale:
            logger.info("Dropped %d stale web client(s)", len(stale))

    async def emit(self, event: str, data: Any):
        await self.broadcast_json({"event": event, "data": data})


broadcaster = Broadcaster()
