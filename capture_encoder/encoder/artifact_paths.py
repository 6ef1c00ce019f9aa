"""Filename conventions for everything a capture session writes."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

MAX_NAME_LENGTH = 30
FRAME_SUFFIX = ".png"
_UNSAFE_CHARS = re.compile(r"[^0-9a-zA-Z\-.]")


def sanitize_name(title: str) -> str:
    """Truncate ``title`` to 30 characters and replace anything outside
    ``[0-9A-Za-z-.]`` with ``_``.

    An empty title yields an empty string; callers must reject that.
    """
    return _UNSAFE_CHARS.sub("_", title[:MAX_NAME_LENGTH])


@dataclass(frozen=True)
class ArtifactPaths:
    """Deterministic file layout derived from a sanitized session name.

    Captured inputs (frames, timestamps, audio) live in ``frame_dir``;
    everything the pipeline produces lives in ``video_dir``.
    """

    name: str
    frame_dir: Path
    video_dir: Path
    extension: str = ".mp4"

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("artifact name must not be empty")

    def frame(self, index: int) -> Path:
        return self.frame_dir / f"{self.name}-{index}{FRAME_SUFFIX}"

    @property
    def frame_pattern(self) -> Path:
        """printf-style sequence pattern consumed by the encoder."""
        return self.frame_dir / f"{self.name}-%d{FRAME_SUFFIX}"

    @property
    def timestamps(self) -> Path:
        return self.frame_dir / f"ts-{self.name}.txt"

    @property
    def audio(self) -> Path:
        return self.frame_dir / f"{self.name}.mp3"

    @property
    def raw_video(self) -> Path:
        return self.video_dir / f"{self.name}{self.extension}"

    @property
    def vfr_video(self) -> Path:
        return self.video_dir / f"vfr-{self.name}.mp4"

    @property
    def cfr_video(self) -> Path:
        return self.video_dir / f"cfr-{self.name}.mp4"

    @property
    def final_video(self) -> Path:
        return self.video_dir / f"final-{self.name}.mp4"

    def intermediates(self) -> tuple[Path, ...]:
        return (self.timestamps, self.audio, self.raw_video, self.vfr_video, self.cfr_video)


__all__ = ["ArtifactPaths", "sanitize_name", "MAX_NAME_LENGTH"]
