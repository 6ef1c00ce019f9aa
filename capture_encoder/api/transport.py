"""WebSocket implementation of the session message channel."""

from __future__ import annotations

from typing import Any, Dict

from aiohttp import web

from capture_encoder.core.errors import TransportFailure


class WebSocketChannel:
    """Adapts an aiohttp ``WebSocketResponse`` to the controller's channel."""

    def __init__(self, ws: web.WebSocketResponse) -> None:
        self._ws = ws

    @property
    def closed(self) -> bool:
        return self._ws.closed

    async def send(self, message: Dict[str, Any]) -> None:
        if self._ws.closed:
            raise TransportFailure("websocket is closed")
        try:
            await self._ws.send_json(message)
        except (ConnectionError, RuntimeError) as e:
            raise TransportFailure(str(e)) from e

    async def close(self) -> None:
        if not self._ws.closed:
            await self._ws.close()


__all__ = ["WebSocketChannel"]
