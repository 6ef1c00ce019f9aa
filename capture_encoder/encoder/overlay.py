"""Caption fade schedules and the ffmpeg filter graph for the overlay stage."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

FONT_COLOR = "efebff"
FONT_SIZE = 14
BAR_HEIGHT = 17
# Keeps the fade ramps finite when a fade duration is zero.
_EPSILON = 0.00001
_UNSAFE_TEXT = re.compile(r"[^0-9A-Za-z .!?@/&+#-]")

# Escapes as seen by ffmpeg after filtergraph parsing: option separators inside
# the eif expansion need a double backslash, expression commas a single one.
_EXPR_COLON = "\\\\:"
_EXPR_COMMA = "\\,"


@dataclass(frozen=True)
class CaptionWindow:
    """Time window (seconds) during which a caption is visible."""

    start: float
    end: float
    fade_in: float = 0.0
    fade_out: float = 0.0

    def alpha_expression(self) -> str:
        """ffmpeg expression evaluating to the caption alpha in ``0..255``."""
        c = _EXPR_COMMA
        ds, de = self.start, self.end
        fid, fod = self.fade_in, self.fade_out
        return (
            f"clip(255*("
            f"1*between(t{c} {_fmt(ds + fid)}{c} {_fmt(de - fod)})"
            f" + ((t - {_fmt(ds)})/({_fmt(fid + _EPSILON)}))*between(t{c} {_fmt(ds)}{c} {_fmt(ds + fid)})"
            f" + (-(t - {_fmt(de)})/({_fmt(fod + _EPSILON)}))*between(t{c} {_fmt(de - fod)}{c} {_fmt(de)})"
            f"){c} 0{c} 255)"
        )


@dataclass(frozen=True)
class FadeSchedule:
    caption: CaptionWindow
    attribution: CaptionWindow


# Keyed by the client-declared target duration in whole seconds. The caption
# fades out just before the attribution fades in.
FADE_SCHEDULES: Dict[int, FadeSchedule] = {
    10: FadeSchedule(CaptionWindow(0, 6, fade_out=0.25), CaptionWindow(6, 10, fade_in=0.25)),
    15: FadeSchedule(CaptionWindow(0, 8, fade_out=0.25), CaptionWindow(8, 15, fade_in=0.25)),
    25: FadeSchedule(CaptionWindow(0, 13, fade_out=0.25), CaptionWindow(13, 25, fade_in=0.25)),
    30: FadeSchedule(CaptionWindow(0, 16, fade_out=0.25), CaptionWindow(16, 30, fade_in=0.25)),
}

DEFAULT_DURATION = 25.0


def default_schedule(duration: Optional[float]) -> FadeSchedule:
    """Neutral schedule: caption for the first half, attribution for the second, no fades."""
    length = duration if duration and duration > 0 else DEFAULT_DURATION
    middle = length / 2
    return FadeSchedule(CaptionWindow(0, middle), CaptionWindow(middle, length))


def schedule_for(video_length: Optional[float], fallback_duration: Optional[float] = None) -> FadeSchedule:
    """Pick the fade schedule for ``video_length``.

    Durations missing from :data:`FADE_SCHEDULES` get :func:`default_schedule`
    sized to ``video_length`` (or ``fallback_duration`` when no length was
    declared).
    """
    if video_length is not None and video_length > 0:
        schedule = FADE_SCHEDULES.get(int(round(video_length)))
        if schedule is not None:
            return schedule
        return default_schedule(video_length)
    return default_schedule(fallback_duration)


def sanitize_overlay_text(text: str) -> str:
    """Upper-case ``text`` and drop characters that would break the filter graph."""
    return _UNSAFE_TEXT.sub("", text.upper()).strip()


def build_overlay_filter(
    text: str,
    attribution: str,
    schedule: FadeSchedule,
    font_file: Optional[Path] = None,
) -> str:
    """Return the ``-filter_complex`` graph for the overlay stage."""
    parts = [
        f"drawbox=x=0:y=ih-{BAR_HEIGHT}:w=iw:h={BAR_HEIGHT}:color=black:t=fill",
        _drawtext(sanitize_overlay_text(text), schedule.caption, font_file),
        _drawtext(_UNSAFE_TEXT.sub("", attribution).strip(), schedule.attribution, font_file),
    ]
    return ",".join(parts)


def _drawtext(text: str, window: CaptionWindow, font_file: Optional[Path]) -> str:
    font = f"fontfile='{font_file}'" if font_file else "font=monospace"
    fontcolor_expr = (
        f"{FONT_COLOR}%{{eif{_EXPR_COLON} {window.alpha_expression()} {_EXPR_COLON} x{_EXPR_COLON} 2 }}"
    )
    options = [
        font,
        f"text='{text}'",
        f"fontcolor={FONT_COLOR}",
        f"fontsize={FONT_SIZE}",
        "x=(w-text_w)/2",
        "y=(h-text_h)-4",
        "ft_load_flags=default",
        f"fontcolor_expr={fontcolor_expr}",
    ]
    return "drawtext=" + ":".join(options)


def _fmt(value: float) -> str:
    return f"{value:g}"


__all__ = [
    "CaptionWindow",
    "FadeSchedule",
    "FADE_SCHEDULES",
    "DEFAULT_DURATION",
    "default_schedule",
    "schedule_for",
    "sanitize_overlay_text",
    "build_overlay_filter",
]
