"""Inbound session commands.

Messages arrive as ``{"cmd": ..., "data": ...}`` and are turned into one of
the frozen dataclasses below by :func:`parse_command`. Anything else is
rejected at this boundary with :class:`UnknownCommand`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from capture_encoder.core.errors import UnknownCommand


@dataclass(frozen=True)
class StartCommand:
    name: Any = None
    framerate: Any = None
    extension: Any = None
    codec: Any = None
    ffmpeg_arguments: Any = None


@dataclass(frozen=True)
class FrameCommand:
    data_url: Any


@dataclass(frozen=True)
class EndCommand:
    pass


@dataclass(frozen=True)
class TimestampsCommand:
    text: str


@dataclass(frozen=True)
class AudioFileCommand:
    payload: str


@dataclass(frozen=True)
class MetaCommand:
    text_overlay: Optional[str] = None
    video_length: Optional[float] = None


Command = (
    StartCommand | FrameCommand | EndCommand |
    TimestampsCommand | AudioFileCommand | MetaCommand
)


def parse_command(message: Any) -> Command:
    if not isinstance(message, Mapping):
        raise UnknownCommand(f"message is not an object: {type(message).__name__}")

    cmd = message.get("cmd")
    data = message.get("data")

    if cmd == "start":
        if data is None:
            return StartCommand()
        _require_mapping(cmd, data)
        return StartCommand(
            name=data.get("name"),
            framerate=data.get("framerate"),
            extension=data.get("extension"),
            codec=data.get("codec"),
            ffmpeg_arguments=data.get("ffmpegArguments"),
        )
    if cmd == "frame":
        _require_mapping(cmd, data)
        return FrameCommand(data_url=data.get("dataURL"))
    if cmd == "end":
        return EndCommand()
    if cmd == "timestamps":
        return TimestampsCommand(text=_require_str(cmd, data))
    if cmd == "audiofile":
        return AudioFileCommand(payload=_require_str(cmd, data))
    if cmd == "meta":
        _require_mapping(cmd, data)
        text = data.get("textOverlay")
        if text is not None and not isinstance(text, str):
            raise UnknownCommand("meta: textOverlay must be a string")
        return MetaCommand(text_overlay=text, video_length=_parse_length(data.get("videoLength")))
    if cmd == "textoverlay":
        return MetaCommand(text_overlay=_require_str(cmd, data))

    raise UnknownCommand(f"unknown message: {cmd}")


def _require_mapping(cmd: str, data: Any) -> None:
    if not isinstance(data, Mapping):
        raise UnknownCommand(f"{cmd}: data must be an object")


def _require_str(cmd: str, data: Any) -> str:
    if not isinstance(data, str):
        raise UnknownCommand(f"{cmd}: data must be a string")
    return data


def _parse_length(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise UnknownCommand("meta: videoLength must be a number")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise UnknownCommand(f"meta: videoLength must be a number, got {value!r}") from None


__all__ = [
    "Command",
    "StartCommand",
    "FrameCommand",
    "EndCommand",
    "TimestampsCommand",
    "AudioFileCommand",
    "MetaCommand",
    "parse_command",
]
