"""Exception taxonomy shared by the session engine and the transport."""

from __future__ import annotations

from typing import Any, Dict, Optional


class EncoderError(Exception):
    """Base class for every error raised by capture_encoder."""


class SessionError(EncoderError):
    """A command was rejected; the session keeps its current state."""

    default_message = "session error"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)

    def event_payload(self) -> Dict[str, Any]:
        return {"msg": self.message}


class InvalidFrameFormat(SessionError):
    default_message = "bad data URL"


class AlreadyInProgress(SessionError):
    default_message = "video already in progress"


class NotStarted(SessionError):
    default_message = "video not started"


class CaptureEnded(NotStarted):
    """Capture-only command received after ``end``."""

    default_message = "video capture already ended"


class ArgumentsNotPermitted(SessionError):
    default_message = (
        "ffmpegArguments not allowed without --allow-arbitrary-ffmpeg-arguments command line option"
    )


class InvalidStartOptions(SessionError):
    default_message = "invalid start options"


class UnknownCommand(EncoderError):
    """An inbound message could not be mapped onto a known command."""


class PipelineStageFailure(EncoderError):
    """An external tool failed; fatal to the current capture."""

    def __init__(self, stage: str, diagnostic: Dict[str, Any]) -> None:
        super().__init__(f"pipeline stage '{stage}' failed")
        self.stage = stage
        self.diagnostic = diagnostic

    def event_payload(self) -> Dict[str, Any]:
        return {"stage": self.stage, "result": self.diagnostic}


class TransportFailure(EncoderError):
    """Sending to the remote client failed; treated as a disconnect."""


__all__ = [
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
