import logging
from typing import Dict, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)

CHANNELS = ("readings", "alerts")


class WSManager:
    """Live dashboard sockets, grouped by channel."""

    def __init__(self) -> None:
        self._channels: Dict[str, Set[WebSocket]] = {name: set() for name in CHANNELS}

    async def connect(self, ws: WebSocket, channel: str) -> None:
        await ws.accept()
        self._channels[channel].add(ws)

    def disconnect(self, ws: WebSocket, channel: str) -> None:
        self._channels[channel].discard(ws)

    async def broadcast(self, channel: str, payload: dict) -> None:
        # best effort: a socket that fails to send is dropped
        for ws in list(self._channels[channel]):
            try:
                await ws.send_json(payload)
            except Exception as ex:
                logger.debug(f"Dropping {channel} socket: {ex!r}")
                self.disconnect(ws, channel)
