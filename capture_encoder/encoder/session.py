"""
Session Controller - per-connection capture state machine.

One controller exists per connected client. It receives commands from the
message channel, feeds frames into its FrameStore, and once the client has
ended the capture and every frame write has finished, runs the assembly
pipeline and reports the result.

State transitions:
- IDLE/DONE/FAILED -> CAPTURING: ``start``
- CAPTURING -> ENDING: ``end``
- ENDING -> ASSEMBLING: end requested and no frame writes in flight
- ASSEMBLING -> DONE: pipeline succeeded and the artifact was registered
- ASSEMBLING -> FAILED: a pipeline stage (or registration) failed

``disconnect()`` may happen in any state; it cleans up and leaves the
registry. A pipeline that is already running is left to finish and its
result is discarded.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

import aiofiles

from capture_encoder.core.config import EncoderConfig
from capture_encoder.core.errors import (
    AlreadyInProgress,
    ArgumentsNotPermitted,
    CaptureEnded,
    InvalidFrameFormat,
    InvalidStartOptions,
    NotStarted,
    PipelineStageFailure,
    SessionError,
    TransportFailure,
    UnknownCommand,
)
from capture_encoder.core.file_utils import delete_all_no_fail, delete_no_fail
from capture_encoder.core.logging_utils import get_module_logger
from capture_encoder.core.task_manager import AsyncTaskManager

from .artifact_paths import ArtifactPaths, sanitize_name
from .commands import (
    AudioFileCommand,
    Command,
    EndCommand,
    FrameCommand,
    MetaCommand,
    StartCommand,
    TimestampsCommand,
    parse_command,
)
from .frame_store import FrameStore, FrameWriter, write_bytes
from .pipeline import AssemblyJob, PipelineFailure, PipelineOrchestrator, PipelineSuccess
from .registry import SessionRegistry

DEFAULT_FRAME_RATE = 30
DEFAULT_EXTENSION = ".mp4"
DEFAULT_TITLE = "untitled"


class SessionState(Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    ENDING = "ending"
    ASSEMBLING = "assembling"
    DONE = "done"
    FAILED = "failed"


_STARTABLE = {SessionState.IDLE, SessionState.DONE, SessionState.FAILED}
_BUSY = {SessionState.CAPTURING, SessionState.ENDING, SessionState.ASSEMBLING}


@dataclass
class Session:
    id: str
    name: Optional[str] = None
    state: SessionState = SessionState.IDLE
    frame_rate: float = DEFAULT_FRAME_RATE
    codec: Optional[str] = None
    extension: str = DEFAULT_EXTENSION
    encoder_arguments: tuple[str, ...] = ()
    text_overlay: str = ""
    video_length: Optional[float] = None
    has_timestamps: bool = False
    has_audio: bool = False
    end_requested: bool = False


class MessageChannel(Protocol):
    """Bidirectional link to the remote client."""

    async def send(self, message: Dict[str, Any]) -> None:
        """Deliver one message; raise TransportFailure when that is impossible."""
        ...

    async def close(self) -> None:
        ...


class ArtifactRegistry(Protocol):
    async def add_file(self, path: Path) -> Dict[str, Any]:
        """Register a finished video and return metadata for the client."""
        ...


class SessionController:
    """Drives one capture session from ``start`` to a registered video."""

    def __init__(
        self,
        session_id: str,
        channel: MessageChannel,
        *,
        config: EncoderConfig,
        registry: SessionRegistry,
        artifacts: ArtifactRegistry,
        orchestrator: Optional[PipelineOrchestrator] = None,
        frame_writer: FrameWriter = write_bytes,
    ) -> None:
        self.logger = get_module_logger(f"Session.{session_id}")
        self.config = config
        self.channel = channel
        self.registry = registry
        self.artifacts = artifacts
        self.orchestrator = orchestrator or PipelineOrchestrator(config)
        self.session = Session(id=session_id)
        self.frame_store = FrameStore(
            max_concurrent_writes=config.max_concurrent_writes,
            on_frame_written=self._on_frame_written,
            on_drained=self._check_for_end,
            writer=frame_writer,
            logger=self.logger,
        )
        self._tasks = AsyncTaskManager(f"Session-{session_id}", logger=self.logger)
        self._paths: Optional[ArtifactPaths] = None
        self._connected = True
        self._disconnected = False

    # ------------------------------------------------------------------
    # Properties

    @property
    def session_id(self) -> str:
        return self.session.id

    @property
    def state(self) -> SessionState:
        return self.session.state

    @property
    def name(self) -> Optional[str]:
        return self.session.name

    @property
    def paths(self) -> Optional[ArtifactPaths]:
        return self._paths

    @property
    def connected(self) -> bool:
        return self._connected

    def describe(self) -> Dict[str, Any]:
        return {
            "id": self.session.id,
            "name": self.session.name,
            "state": self.session.state.value,
            "frames": len(self.frame_store.frames),
            "pending_writes": self.frame_store.pending_writes,
            "errors": self.frame_store.error_count,
        }

    # ------------------------------------------------------------------
    # Connection lifecycle

    async def attach(self) -> None:
        """Join the registry and greet the client."""
        self.registry.add(self)
        self.logger.debug("%s: start encoder", self.session.id)
        await self.send_event("start", {})

    async def disconnect(self) -> None:
        """Drop the client. Safe to call more than once."""
        if self._disconnected:
            return
        self._disconnected = True
        self._connected = False
        self.logger.info("%s: disconnected (state=%s)", self.session.id, self.session.state.value)

        self.frame_store.detach()
        if self._paths is not None:
            self._cleanup(self._paths)

        if not self.registry.remove(self):
            self.logger.debug("Session %s was not registered", self.session.id)

        try:
            await self.channel.close()
        except Exception as e:
            self.logger.debug("Error closing channel: %s", e)

    async def wait_idle(self) -> None:
        """Wait for in-flight frame writes and any running pipeline."""
        await self.frame_store.wait_idle()
        await self._tasks.wait_all()

    async def send_event(self, cmd: str, data: Any = None) -> bool:
        if not self._connected:
            return False
        try:
            await self.channel.send({"cmd": cmd, "data": data})
            return True
        except TransportFailure as e:
            self.logger.error("error sending to client, disconnecting: %s", e)
            await self.disconnect()
            return False

    # ------------------------------------------------------------------
    # Command dispatch

    async def dispatch(self, message: Any) -> None:
        try:
            command = parse_command(message)
        except UnknownCommand as e:
            self.logger.error("%s", e)
            return

        try:
            await self._handle(command)
        except SessionError as e:
            self.logger.warning("Rejected %s: %s", type(command).__name__, e)
            await self.send_event("error", e.event_payload())

    async def _handle(self, command: Command) -> None:
        match command:
            case StartCommand():
                self._handle_start(command)
                await self.send_event("start", {"name": self.session.name})
            case FrameCommand(data_url=data_url):
                self._handle_frame(data_url)
            case EndCommand():
                await self._handle_end()
            case TimestampsCommand(text=text):
                await self._handle_timestamps(text)
            case AudioFileCommand(payload=payload):
                await self._handle_audio_file(payload)
            case MetaCommand(text_overlay=text_overlay, video_length=video_length):
                self._handle_meta(text_overlay, video_length)

    def _handle_start(self, command: StartCommand) -> None:
        self.logger.debug("start: %s", command)
        if self.session.state in _BUSY:
            raise AlreadyInProgress()

        encoder_arguments: tuple[str, ...] = ()
        if command.ffmpeg_arguments is not None:
            if not self.config.allow_arbitrary_ffmpeg_arguments:
                raise ArgumentsNotPermitted()
            if not isinstance(command.ffmpeg_arguments, list) or not all(
                isinstance(arg, str) for arg in command.ffmpeg_arguments
            ):
                raise InvalidStartOptions("ffmpegArguments must be a list of strings")
            encoder_arguments = tuple(command.ffmpeg_arguments)

        frame_rate = command.framerate if command.framerate is not None else DEFAULT_FRAME_RATE
        if isinstance(frame_rate, bool) or not isinstance(frame_rate, (int, float)) or frame_rate <= 0:
            raise InvalidStartOptions(f"framerate must be a positive number, got {command.framerate!r}")

        extension = self._parse_extension(command.extension)

        codec = command.codec
        if codec is not None and (not isinstance(codec, str) or not codec.strip()):
            raise InvalidStartOptions("codec must be a non-empty string")

        title = command.name or DEFAULT_TITLE
        if not isinstance(title, str):
            raise InvalidStartOptions("name must be a string")
        name = sanitize_name(f"{title}-{self.session.id}")
        if not name:
            raise InvalidStartOptions("name is empty after sanitizing")

        paths = ArtifactPaths(name, self.config.frame_dir, self.config.video_dir, extension)

        self.session = Session(
            id=self.session.id,
            name=name,
            state=SessionState.CAPTURING,
            frame_rate=frame_rate,
            codec=codec,
            extension=extension,
            encoder_arguments=encoder_arguments,
        )
        self._paths = paths
        self.frame_store.reset(paths)
        self.logger.info("start: %s", name)

    @staticmethod
    def _parse_extension(value: Any) -> str:
        if value is None:
            return DEFAULT_EXTENSION
        if not isinstance(value, str):
            raise InvalidStartOptions("extension must be a string")
        extension = sanitize_name(value)
        if not extension.strip("."):
            raise InvalidStartOptions(f"invalid extension {value!r}")
        return extension if extension.startswith(".") else f".{extension}"

    def _require_capturing(self) -> ArtifactPaths:
        state = self.session.state
        if state in (SessionState.ENDING, SessionState.ASSEMBLING):
            raise CaptureEnded()
        if state is not SessionState.CAPTURING or self._paths is None:
            raise NotStarted()
        return self._paths

    def _handle_frame(self, data_url: Any) -> None:
        self._require_capturing()
        try:
            self.frame_store.submit_frame(data_url)
        except InvalidFrameFormat as e:
            # dropped silently; the client keeps streaming
            self.logger.error("%s", e)

    async def _handle_end(self) -> None:
        self._require_capturing()
        self.session.end_requested = True
        self.session.state = SessionState.ENDING
        self.logger.info(
            "end: %s (%d pending writes)", self.session.name, self.frame_store.pending_writes
        )
        await self._check_for_end()

    async def _handle_timestamps(self, text: str) -> None:
        paths = self._require_capturing()
        self.logger.info("saving timestamp data to %s", paths.timestamps)
        try:
            async with aiofiles.open(paths.timestamps, "w", encoding="utf-8") as fh:
                await fh.write(text)
        except OSError as e:
            self.logger.error("Failed to write %s: %s", paths.timestamps, e)
            return
        self.session.has_timestamps = True
        self.logger.debug("%s written successfully", paths.timestamps)

    async def _handle_audio_file(self, payload: str) -> None:
        paths = self._require_capturing()
        if payload.startswith("data:") and "," in payload:
            payload = payload.split(",", 1)[1]
        try:
            audio = await asyncio.to_thread(base64.b64decode, payload, validate=True)
            async with aiofiles.open(paths.audio, "wb") as fh:
                await fh.write(audio)
        except (binascii.Error, ValueError, OSError) as e:
            self.logger.error("Failed to write audio track %s: %s", paths.audio, e)
            return
        self.session.has_audio = True
        self.logger.debug("%s written successfully", paths.audio)

    def _handle_meta(self, text_overlay: Optional[str], video_length: Optional[float]) -> None:
        self._require_capturing()
        if text_overlay is not None:
            self.logger.info("Received text overlay: %s", text_overlay)
            self.session.text_overlay = text_overlay.upper()
        if video_length is not None:
            self.session.video_length = video_length

    # ------------------------------------------------------------------
    # Frame store hooks

    async def _on_frame_written(self, frame_num: int) -> None:
        await self.send_event("frame", {"frameNum": frame_num})

    async def _check_for_end(self) -> None:
        session = self.session
        if session.state is not SessionState.ENDING or not session.end_requested:
            return
        if self.frame_store.pending_writes != 0 or not self._connected:
            return

        session.state = SessionState.ASSEMBLING
        job = AssemblyJob(
            paths=self._paths,
            frame_rate=session.frame_rate,
            frame_count=len(self.frame_store.frames),
            codec=session.codec,
            encoder_arguments=session.encoder_arguments,
            has_timestamps=session.has_timestamps,
            has_audio=session.has_audio,
            text_overlay=session.text_overlay,
            video_length=session.video_length,
        )
        self.logger.info(
            "converting %s to %s (%d frames, %d errors)",
            job.paths.frame_pattern,
            job.paths.final_video,
            job.frame_count,
            self.frame_store.error_count,
        )
        self._tasks.create(self._assemble(job), name=f"assemble-{job.paths.name}")

    # ------------------------------------------------------------------
    # Assembly

    async def _on_progress(self, stage: str, fraction: float) -> None:
        await self.send_event("progress", {"progress": fraction, "stage": stage})

    async def _assemble(self, job: AssemblyJob) -> None:
        try:
            result = await self.orchestrator.assemble(job, self._on_progress)
        except Exception as e:
            self.logger.exception("Pipeline crashed for %s", job.paths.name)
            result = PipelineFailure("pipeline", {"msg": str(e)})

        if not self._connected:
            self.logger.info("Discarding result for disconnected session %s", job.paths.name)
            self._cleanup(job.paths, include_final=True)
            return

        match result:
            case PipelineSuccess(final_path=final_path):
                try:
                    file_info = await self.artifacts.add_file(final_path)
                except Exception as e:
                    self.logger.error("error adding file: %s (%s)", final_path, e)
                    await self._fail(job.paths, PipelineStageFailure("register", {"msg": str(e)}))
                    return
                self.logger.info("converted frames to: %s", final_path)
                if not await self.send_event("end", file_info):
                    self.logger.info("Client left before receiving %s; deleting it", final_path)
                    self.artifacts.remove_file(final_path)
                    self._cleanup(job.paths, include_final=True)
                    return
                self._cleanup(job.paths)
                self.session.state = SessionState.DONE
            case PipelineFailure(stage=stage, diagnostic=diagnostic):
                await self._fail(job.paths, PipelineStageFailure(stage, diagnostic))

    async def _fail(self, paths: ArtifactPaths, error: PipelineStageFailure) -> None:
        self.logger.error("error running %s: %s", error.stage, error.diagnostic)
        await self.send_event("error", error.event_payload())
        self._cleanup(paths, include_final=True)
        self.session.name = None
        self.session.state = SessionState.FAILED

    def _cleanup(self, paths: ArtifactPaths, *, include_final: bool = False) -> None:
        if self.config.keep_frames:
            self.logger.debug("keeping frames for: %s", paths.name)
        elif self.frame_store.frames:
            self.logger.info("deleting frames for: %s", paths.name)
            self.frame_store.delete_frames()
        delete_all_no_fail(paths.intermediates())
        if include_final:
            delete_no_fail(paths.final_video)


__all__ = [
    "SessionState",
    "Session",
    "MessageChannel",
    "ArtifactRegistry",
    "SessionController",
]
