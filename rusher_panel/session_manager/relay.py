"""Best-effort fan-out of live events to connected WebSocket observers."""

from __future__ import annotations

import logging
import sys
from typing import Any

from aiohttp import web

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


class LogRelay:
    """Registry of observers; ``broadcast`` skips any that are no longer open."""

    def __init__(self):
        self._observers: set[web.WebSocketResponse] = set()

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    def add(self, ws: web.WebSocketResponse):
        self._observers.add(ws)
        logger.info(f"Observer connected ({len(self._observers)} total)")

    def remove(self, ws: web.WebSocketResponse):
        self._observers.discard(ws)
        logger.info(f"Observer disconnected ({len(self._observers)} total)")

    async def send(self, ws: web.WebSocketResponse, event: dict[str, Any]) -> bool:
        """Send to one observer. Returns False if it was skipped."""
        if ws.closed:
            self._observers.discard(ws)
            return False
        try:
            await ws.send_json(event)
            return True
        except (ConnectionResetError, RuntimeError) as e:
            logger.debug(f"Dropping observer after failed send: {e}")
            self._observers.discard(ws)
            return False

    async def broadcast(self, event: dict[str, Any]) -> int:
        """Send ``event`` to every open observer; returns how many received it."""
        delivered = 0
        for ws in list(self._observers):
            if await self.send(ws, event):
                delivered += 1
        return delivered

    async def close_all(self):
        for ws in list(self._observers):
            if not ws.closed:
                await ws.close()
        self._observers.clear()
