"""aiohttp transport: WebSocket sessions, artifact serving, status endpoint."""

from .artifacts import VideoDirectoryRegistry
from .server import EncoderServer
from .transport import WebSocketChannel

__all__ = ["EncoderServer", "VideoDirectoryRegistry", "WebSocketChannel"]
