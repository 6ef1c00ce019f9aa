"""Run one external tool and stream its progress and outcome."""

from __future__ import annotations

import asyncio
import re
import shlex
from collections import deque
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Deque, Dict, Optional, Sequence

from capture_encoder.core.logging_utils import LoggerLike, ensure_structured_logger

_LINE_SPLIT = re.compile(rb"[\r\n]")
_FRAME_MARKER = re.compile(r"frame=\s*(\d+)")
_READ_SIZE = 4096


@dataclass(frozen=True)
class ProcessProgress:
    frame: int


@dataclass(frozen=True)
class ProcessDone:
    result: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ProcessFailed:
    diagnostic: Dict[str, Any] = field(default_factory=dict)


ProcessEvent = ProcessProgress | ProcessDone | ProcessFailed


def parse_progress(line: str) -> Optional[int]:
    """Return the frame number from an ffmpeg status line, if present."""
    match = _FRAME_MARKER.search(line)
    if match is None:
        return None
    return int(match.group(1))


class ExternalProcessRunner:
    """Spawns external tools with ``asyncio.create_subprocess_exec``.

    ``run()`` is an async generator yielding any number of
    :class:`ProcessProgress` events followed by exactly one
    :class:`ProcessDone` or :class:`ProcessFailed`. If the consumer stops
    iterating early the child process is killed and reaped.
    """

    def __init__(
        self,
        *,
        timeout: Optional[float] = None,
        tail_lines: int = 40,
        logger: LoggerLike = None,
    ) -> None:
        self.timeout = timeout
        self.tail_lines = tail_lines
        self._logger = ensure_structured_logger(logger, fallback_name="ProcessRunner")

    async def run(self, tool: str, args: Sequence[Any]) -> AsyncIterator[ProcessEvent]:
        argv = [str(tool), *(str(arg) for arg in args)]
        self._logger.info("Running: %s", shlex.join(argv))

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            self._logger.error("Failed to start %s: %s", tool, e)
            yield ProcessFailed({"tool": str(tool), "args": argv[1:], "error": str(e)})
            return

        stdout_tail: Deque[str] = deque(maxlen=self.tail_lines)
        stderr_tail: Deque[str] = deque(maxlen=self.tail_lines)
        stdout_task = asyncio.create_task(self._drain(process.stdout, stdout_tail))
        deadline = asyncio.get_running_loop().time() + self.timeout if self.timeout else None
        timed_out = False

        try:
            pending = b""
            while True:
                chunk = await self._with_deadline(process.stderr.read(_READ_SIZE), deadline)
                if not chunk:
                    break
                pending += chunk
                *lines, pending = _LINE_SPLIT.split(pending)
                for raw in lines:
                    frame = self._record_line(raw, stderr_tail)
                    if frame is not None:
                        yield ProcessProgress(frame)
            frame = self._record_line(pending, stderr_tail)
            if frame is not None:
                yield ProcessProgress(frame)

            await self._with_deadline(stdout_task, deadline)
            await self._with_deadline(process.wait(), deadline)
        except asyncio.TimeoutError:
            timed_out = True
            self._logger.error("%s timed out after %.1fs", tool, self.timeout)
        finally:
            if process.returncode is None:
                process.kill()
                await process.wait()
            if not stdout_task.done():
                stdout_task.cancel()

        result = {
            "tool": str(tool),
            "args": argv[1:],
            "returncode": process.returncode,
            "stdout": "\n".join(stdout_tail),
            "stderr": "\n".join(stderr_tail),
        }
        self._logger.debug("%s stdout: %s", tool, result["stdout"])
        self._logger.debug("%s stderr: %s", tool, result["stderr"])

        if timed_out:
            result["timed_out"] = True
            yield ProcessFailed(result)
        elif process.returncode == 0:
            yield ProcessDone(result)
        else:
            self._logger.error("%s exited with code %s", tool, process.returncode)
            yield ProcessFailed(result)

    @staticmethod
    def _record_line(raw: bytes, tail: Deque[str]) -> Optional[int]:
        text = raw.decode("utf-8", errors="replace").strip()
        if not text:
            return None
        tail.append(text)
        return parse_progress(text)

    async def _drain(self, stream: Optional[asyncio.StreamReader], tail: Deque[str]) -> None:
        if stream is None:
            return
        pending = b""
        while chunk := await stream.read(_READ_SIZE):
            pending += chunk
            *lines, pending = _LINE_SPLIT.split(pending)
            for raw in lines:
                self._record_line(raw, tail)
        self._record_line(pending, tail)

    @staticmethod
    async def _with_deadline(awaitable, deadline: Optional[float]):
        if deadline is None:
            return await awaitable
        remaining = max(0.0, deadline - asyncio.get_running_loop().time())
        return await asyncio.wait_for(awaitable, timeout=remaining)


__all__ = [
    "ExternalProcessRunner",
    "ProcessEvent",
    "ProcessProgress",
    "ProcessDone",
    "ProcessFailed",
    "parse_progress",
]
