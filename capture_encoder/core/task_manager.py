"""Tracking for the background tasks a capture session spawns.

Frame writes and pipeline runs are fire-and-forget from the message loop's
point of view; ``AsyncTaskManager`` keeps them reachable so that failures
are logged and callers can wait for the session to go quiet.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable
from typing import Optional

from .logging_utils import LoggerLike, ensure_structured_logger


class AsyncTaskManager:
    """Owns a set of running tasks and logs how each one ends."""

    def __init__(self, name: Optional[str] = None, logger: LoggerLike = None) -> None:
        self._name = name or self.__class__.__name__
        self._logger = ensure_structured_logger(logger, fallback_name=self._name)
        self._started: dict[asyncio.Task, float] = {}

    def create(self, coro: Awaitable, *, name: Optional[str] = None) -> asyncio.Task:
        """Schedule ``coro`` on the running loop and track it until it finishes."""
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._started[task] = time.perf_counter()
        task.add_done_callback(self._finished)
        return task

    def _finished(self, task: asyncio.Task) -> None:
        elapsed_ms = (time.perf_counter() - self._started.pop(task, time.perf_counter())) * 1000
        if task.cancelled():
            outcome = "cancelled"
        elif task.exception() is not None:
            exc = task.exception()
            self._logger.error("%s task %s failed: %s", self._name, task.get_name(), exc, exc_info=exc)
            outcome = f"error:{type(exc).__name__}"
        else:
            outcome = "completed"
        self._logger.debug("%s task %s %s in %.1fms", self._name, task.get_name(), outcome, elapsed_ms)

    async def wait_all(self) -> None:
        """Wait until every tracked task, including ones spawned meanwhile, is done."""
        while True:
            pending = [task for task in self._started if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)


__all__ = ["AsyncTaskManager"]
