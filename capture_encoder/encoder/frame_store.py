"""Persist incoming frames and track in-flight writes."""

from __future__ import annotations

import asyncio
import base64
import binascii
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

import aiofiles

from capture_encoder.core.errors import InvalidFrameFormat
from capture_encoder.core.file_utils import delete_all_no_fail, delete_no_fail
from capture_encoder.core.logging_utils import LoggerLike, ensure_structured_logger
from capture_encoder.core.task_manager import AsyncTaskManager

from .artifact_paths import ArtifactPaths

EXPECTED_HEADER = "data:image/png;base64,"

FrameWrittenCallback = Callable[[int], Awaitable[None]]
DrainedCallback = Callable[[], Awaitable[None]]
FrameWriter = Callable[[Path, bytes], Awaitable[None]]


async def write_bytes(path: Path, data: bytes) -> None:
    async with aiofiles.open(path, "wb") as fh:
        await fh.write(data)


class FrameStore:
    """Writes one PNG per accepted frame.

    Frame indices are handed out synchronously in arrival order; writes
    complete asynchronously in any order. ``pending_writes`` counts every
    accepted frame whose write has not finished yet (including frames still
    waiting for a write slot), so the owner can gate end-of-capture on it.
    """

    def __init__(
        self,
        *,
        max_concurrent_writes: int = 16,
        on_frame_written: Optional[FrameWrittenCallback] = None,
        on_drained: Optional[DrainedCallback] = None,
        writer: FrameWriter = write_bytes,
        logger: LoggerLike = None,
    ) -> None:
        self._logger = ensure_structured_logger(logger, fallback_name="FrameStore")
        self._write_slots = asyncio.Semaphore(max(1, max_concurrent_writes))
        self._tasks = AsyncTaskManager("FrameStore", logger=self._logger)
        self._writer = writer
        self._on_frame_written = on_frame_written
        self._on_drained = on_drained
        self._paths: Optional[ArtifactPaths] = None
        self._detached = False

        self.frame_counter = 0
        self.pending_writes = 0
        self.error_count = 0
        self.frames: List[Path] = []

    # ------------------------------------------------------------------
    # lifecycle

    def reset(self, paths: ArtifactPaths) -> None:
        """Prepare for a new capture written under ``paths``."""
        self._paths = paths
        self.frame_counter = 0
        self.error_count = 0
        self.frames = []

    def detach(self) -> None:
        """Stop delivering notifications; frames finishing later are deleted."""
        self._detached = True

    @property
    def detached(self) -> bool:
        return self._detached

    async def wait_idle(self) -> None:
        """Wait for every in-flight write to finish."""
        await self._tasks.wait_all()

    def delete_frames(self) -> int:
        removed = delete_all_no_fail(self.frames)
        self.frames = []
        return removed

    # ------------------------------------------------------------------
    # frame intake

    def submit_frame(self, data_url: str) -> int:
        """Accept one frame and schedule its write. Returns the frame index.

        Raises:
            InvalidFrameFormat: ``data_url`` is not a base64 PNG data URL.
        """
        if self._paths is None:
            raise RuntimeError("FrameStore.reset() must be called before submitting frames")
        if not isinstance(data_url, str) or not data_url.startswith(EXPECTED_HEADER):
            raise InvalidFrameFormat()

        frame_num = self.frame_counter
        self.frame_counter += 1
        self.pending_writes += 1

        filename = self._paths.frame(frame_num)
        payload = data_url[len(EXPECTED_HEADER):]
        self._tasks.create(self._write_frame(frame_num, filename, payload), name=f"write-frame-{frame_num}")
        return frame_num

    async def _write_frame(self, frame_num: int, filename: Path, payload: str) -> None:
        self._logger.debug("write: %s", filename)
        ok = False
        try:
            async with self._write_slots:
                image = await asyncio.to_thread(base64.b64decode, payload, validate=True)
                await self._writer(filename, image)
            ok = True
        except (binascii.Error, ValueError, OSError) as e:
            self.error_count += 1
            self._logger.error("Failed to write frame %s: %s", filename, e)
        finally:
            self.pending_writes -= 1

        if self._detached:
            if ok:
                delete_no_fail(filename)
            return

        if ok:
            self.frames.append(filename)
            self._logger.debug("saved frame: %s", filename)
            if self._on_frame_written is not None:
                await self._on_frame_written(frame_num)

        if self.pending_writes == 0 and self._on_drained is not None:
            await self._on_drained()


__all__ = ["FrameStore", "EXPECTED_HEADER", "write_bytes"]
