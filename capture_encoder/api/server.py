"""
Encoder Server - aiohttp composition root.

Owns the session registry, the artifact registry and the shared pipeline
orchestrator, and hands them to one SessionController per WebSocket
connection. Also serves finished videos and, optionally, static assets.
"""

import itertools
from typing import Optional

from aiohttp import WSMsgType, web

from capture_encoder.core.config import EncoderConfig
from capture_encoder.core.logging_utils import get_module_logger
from capture_encoder.encoder.pipeline import PipelineOrchestrator
from capture_encoder.encoder.registry import SessionRegistry
from capture_encoder.encoder.session import SessionController

from .artifacts import VideoDirectoryRegistry
from .middleware import error_handling_middleware, request_logging_middleware
from .transport import WebSocketChannel


logger = get_module_logger("EncoderServer")

# Frames arrive as base64 PNG data URLs; a single 4K frame easily exceeds
# aiohttp's 4 MB default.
MAX_MESSAGE_SIZE = 64 * 1024 * 1024

REGISTRY_KEY = web.AppKey("registry", SessionRegistry)


class EncoderServer:
    """HTTP/WebSocket front end for capture sessions."""

    def __init__(
        self,
        config: EncoderConfig,
        *,
        registry: Optional[SessionRegistry] = None,
        artifacts: Optional[VideoDirectoryRegistry] = None,
        orchestrator: Optional[PipelineOrchestrator] = None,
    ):
        self.config = config
        self.registry = registry or SessionRegistry()
        self.artifacts = artifacts or VideoDirectoryRegistry(config.video_dir)
        self.orchestrator = orchestrator or PipelineOrchestrator(config)

        self._ids = itertools.count(1)
        self._app: Optional[web.Application] = None
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None
        self._running = False

    def create_app(self) -> web.Application:
        """Create and configure the aiohttp application."""
        self.config.ensure_directories()

        app = web.Application(middlewares=[request_logging_middleware, error_handling_middleware])
        app[REGISTRY_KEY] = self.registry

        app.router.add_get("/ws", self._handle_websocket)
        app.router.add_get("/api/status", self._handle_status)
        app.router.add_get("/videos/{filename:.+}", self._handle_video)
        if self.config.base_dir is not None:
            app.router.add_static("/", self.config.base_dir)

        app.on_shutdown.append(self._on_shutdown)
        return app

    async def start(self) -> None:
        """Start serving (non-blocking)."""
        if self._running:
            logger.warning("Encoder server already running")
            return

        self._app = self.create_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()

        self._site = web.TCPSite(self._runner, self.config.host, self.config.port)
        await self._site.start()

        self._running = True
        logger.info("Encoder server started on %s", self.url)

    async def stop(self) -> None:
        """Stop the server and disconnect every live session."""
        if not self._running:
            return

        logger.info("Stopping encoder server...")

        if self._runner:
            await self._runner.cleanup()
            self._runner = None

        self._site = None
        self._app = None
        self._running = False

        logger.info("Encoder server stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def url(self) -> str:
        return f"http://{self.config.host}:{self.config.port}"

    # ------------------------------------------------------------------
    # Handlers

    async def _handle_websocket(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse(max_msg_size=MAX_MESSAGE_SIZE)
        await ws.prepare(request)

        session_id = str(next(self._ids))
        controller = SessionController(
            session_id,
            WebSocketChannel(ws),
            config=self.config,
            registry=self.registry,
            artifacts=self.artifacts,
            orchestrator=self.orchestrator,
        )
        logger.info("Client connected: session %s from %s", session_id, request.remote)
        await controller.attach()

        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    try:
                        message = msg.json()
                    except ValueError as e:
                        logger.error("Session %s sent invalid JSON: %s", session_id, e)
                        continue
                    await controller.dispatch(message)
                elif msg.type == WSMsgType.ERROR:
                    logger.error("Session %s websocket error: %s", session_id, ws.exception())
                    break
        finally:
            await controller.disconnect()

        return ws

    async def _handle_video(self, request: web.Request) -> web.FileResponse:
        path = self.artifacts.resolve(request.match_info["filename"])
        if path is None:
            raise web.HTTPNotFound(text=f"No video named {request.match_info['filename']}")
        return web.FileResponse(path)

    async def _handle_status(self, request: web.Request) -> web.Response:
        return web.json_response({
            "sessions": len(self.registry),
            "details": [session.describe() for session in self.registry],
            "videos": self.artifacts.files(),
        })

    async def _on_shutdown(self, app: web.Application) -> None:
        await self.registry.close_all()


__all__ = ["EncoderServer", "MAX_MESSAGE_SIZE", "REGISTRY_KEY"]
