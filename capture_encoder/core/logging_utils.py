"""Component-prefixed loggers for the capture encoder.

Every logger lives under the ``capture_encoder`` namespace and prefixes its
messages with ``[Component]`` so that interleaved session output stays
readable, e.g. ``[Session.3] start: pen-3``.
"""

from __future__ import annotations

import logging
from typing import Optional, Union

LOGGER_NAMESPACE = "capture_encoder"


class StructuredLogger:
    """Logger proxy that tags each message with a component name."""

    __slots__ = ("_logger", "component")

    def __init__(self, logger: logging.Logger, component: Optional[str] = None) -> None:
        self._logger = logger
        self.component = component or logger.name.removeprefix(LOGGER_NAMESPACE).lstrip(".") or "Core"

    def __getattr__(self, item):
        return getattr(self._logger, item)

    @property
    def name(self) -> str:
        return self._logger.name

    def _emit(self, level: int, message: object, args: tuple, kwargs: dict) -> None:
        self._logger.log(level, f"[{self.component}] {message}", *args, **kwargs)

    def debug(self, message: object, *args, **kwargs) -> None:
        self._emit(logging.DEBUG, message, args, kwargs)

    def info(self, message: object, *args, **kwargs) -> None:
        self._emit(logging.INFO, message, args, kwargs)

    def warning(self, message: object, *args, **kwargs) -> None:
        self._emit(logging.WARNING, message, args, kwargs)

    def error(self, message: object, *args, **kwargs) -> None:
        self._emit(logging.ERROR, message, args, kwargs)

    def exception(self, message: object, *args, **kwargs) -> None:
        kwargs.setdefault("exc_info", True)
        self._emit(logging.ERROR, message, args, kwargs)


LoggerLike = Union[StructuredLogger, logging.Logger, None]


def get_module_logger(name: Optional[str] = None) -> StructuredLogger:
    """Return the structured logger for ``capture_encoder.<name>``."""
    if not name:
        return StructuredLogger(logging.getLogger(LOGGER_NAMESPACE))
    if not name.startswith(LOGGER_NAMESPACE):
        name = f"{LOGGER_NAMESPACE}.{name}"
    return StructuredLogger(logging.getLogger(name))


def ensure_structured_logger(
    logger: LoggerLike,
    *,
    component: Optional[str] = None,
    fallback_name: Optional[str] = None,
) -> StructuredLogger:
    """Use an injected logger as-is, wrap a plain one, or fall back to a module logger."""
    if isinstance(logger, StructuredLogger):
        return logger
    if isinstance(logger, logging.Logger):
        return StructuredLogger(logger, component=component)
    return get_module_logger(fallback_name)


__all__ = [
    "LoggerLike",
    "StructuredLogger",
    "ensure_structured_logger",
    "get_module_logger",
]
