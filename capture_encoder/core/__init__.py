"""Core infrastructure for capture_encoder: logging, config, errors, task tracking."""

from .config import EncoderConfig, load_config
from .errors import (
    AlreadyInProgress,
    ArgumentsNotPermitted,
    CaptureEnded,
    EncoderError,
    InvalidFrameFormat,
    InvalidStartOptions,
    NotStarted,
    PipelineStageFailure,
    SessionError,
    TransportFailure,
    UnknownCommand,
)
from .logging_config import configure_logging
from .logging_utils import StructuredLogger, get_module_logger
from .task_manager import AsyncTaskManager

__all__ = [
    "EncoderConfig",
    "load_config",
    "configure_logging",
    "StructuredLogger",
    "get_module_logger",
    "AsyncTaskManager",
    "EncoderError",
    "SessionError",
    "InvalidFrameFormat",
    "AlreadyInProgress",
    "NotStarted",
    "CaptureEnded",
    "ArgumentsNotPermitted",
    "InvalidStartOptions",
    "UnknownCommand",
    "PipelineStageFailure",
    "TransportFailure",
]
