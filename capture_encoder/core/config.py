"""Server configuration: defaults, ``key = value`` config file and CLI overrides."""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional

from .logging_utils import get_module_logger
from .paths import DEFAULT_FRAME_DIR, DEFAULT_VIDEO_DIR

logger = get_module_logger("Config")

DEFAULT_ATTRIBUTION = "generated by @pasteur.cc / www.pasteur.cc"


@dataclass(slots=True)
class EncoderConfig:
    frame_dir: Path = DEFAULT_FRAME_DIR
    video_dir: Path = DEFAULT_VIDEO_DIR
    keep_frames: bool = False
    allow_arbitrary_ffmpeg_arguments: bool = False
    base_dir: Optional[Path] = None
    max_concurrent_writes: int = 16
    process_timeout: Optional[float] = None
    ffmpeg_path: str = "ffmpeg"
    mp4fpsmod_path: str = "mp4fpsmod"
    font_file: Optional[Path] = None
    attribution_text: str = DEFAULT_ATTRIBUTION
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "info"
    log_file: Optional[Path] = None

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "EncoderConfig":
        """Build a config from raw (usually string) values, falling back to defaults."""
        defaults = cls()
        return cls(
            frame_dir=Path(get_str(values, "frame_dir", str(defaults.frame_dir))).expanduser(),
            video_dir=Path(get_str(values, "video_dir", str(defaults.video_dir))).expanduser(),
            keep_frames=get_bool(values, "keep_frames", defaults.keep_frames),
            allow_arbitrary_ffmpeg_arguments=get_bool(
                values, "allow_arbitrary_ffmpeg_arguments", defaults.allow_arbitrary_ffmpeg_arguments
            ),
            base_dir=get_optional_path(values, "base_dir"),
            max_concurrent_writes=max(1, get_int(values, "max_concurrent_writes", defaults.max_concurrent_writes)),
            process_timeout=get_optional_float(values, "process_timeout"),
            ffmpeg_path=get_str(values, "ffmpeg_path", defaults.ffmpeg_path),
            mp4fpsmod_path=get_str(values, "mp4fpsmod_path", defaults.mp4fpsmod_path),
            font_file=get_optional_path(values, "font_file"),
            attribution_text=get_str(values, "attribution_text", defaults.attribution_text),
            host=get_str(values, "host", defaults.host),
            port=get_int(values, "port", defaults.port),
            log_level=get_str(values, "log_level", defaults.log_level).lower(),
            log_file=get_optional_path(values, "log_file"),
        )

    def with_overrides(self, overrides: Mapping[str, Any]) -> "EncoderConfig":
        """Return a copy with every non-None override applied."""
        merged = self.to_dict()
        known = {f.name for f in fields(self)}
        for key, value in overrides.items():
            if key in known and value is not None:
                merged[key] = value
        return EncoderConfig.from_mapping(merged)

    def ensure_directories(self) -> None:
        self.frame_dir.mkdir(parents=True, exist_ok=True)
        self.video_dir.mkdir(parents=True, exist_ok=True)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Config file parsing
# ---------------------------------------------------------------------------


def parse_config_lines(lines: Iterable[str]) -> Dict[str, str]:
    config: Dict[str, str] = {}

    for raw_line in lines:
        line = raw_line.strip()
        if not line or line.startswith('#'):
            continue
        if '=' not in line:
            continue

        key, value = line.split('=', 1)
        key = key.strip()
        value = value.strip()

        if '#' in value:
            value = value.split('#')[0].strip()

        if (value.startswith('"') and value.endswith('"')) or (value.startswith("'") and value.endswith("'")):
            value = value[1:-1]

        config[key] = value

    return config


def load_config(config_path: Optional[Path] = None, overrides: Optional[Mapping[str, Any]] = None) -> EncoderConfig:
    """Load defaults, then ``config_path`` (if it exists), then ``overrides``."""
    values: Dict[str, str] = {}

    if config_path is not None:
        if config_path.exists():
            try:
                with open(config_path, 'r', encoding='utf-8') as fh:
                    values = parse_config_lines(fh)
                values = _resolve_relative_paths(values, config_path.parent)
                logger.debug("Loaded %d config values from %s", len(values), config_path)
            except OSError as e:
                logger.error("Failed to read config %s: %s", config_path, e)
        else:
            logger.warning("Config file not found: %s", config_path)

    config = EncoderConfig.from_mapping(values)
    if overrides:
        config = config.with_overrides(overrides)
    return config


# Relative paths in a config file are relative to the file, not the cwd.
_PATH_KEYS = ("frame_dir", "video_dir", "base_dir", "font_file", "log_file")


def _resolve_relative_paths(values: Dict[str, str], base: Path) -> Dict[str, str]:
    resolved = dict(values)
    for key in _PATH_KEYS:
        raw = resolved.get(key)
        if not raw:
            continue
        path = Path(raw).expanduser()
        if not path.is_absolute():
            resolved[key] = str(base / path)
    return resolved


# ---------------------------------------------------------------------------
# Type coercion helpers
# ---------------------------------------------------------------------------


def get_str(values: Mapping[str, Any], key: str, default: str) -> str:
    val = values.get(key)
    return str(val) if val is not None and str(val) != "" else default


def get_int(values: Mapping[str, Any], key: str, default: int) -> int:
    val = values.get(key)
    if val is None:
        return default
    try:
        return int(val)
    except (ValueError, TypeError):
        logger.warning("Invalid integer for %s: %r (using %d)", key, val, default)
        return default


def get_float(values: Mapping[str, Any], key: str, default: float) -> float:
    val = values.get(key)
    if val is None:
        return default
    try:
        return float(val)
    except (ValueError, TypeError):
        logger.warning("Invalid number for %s: %r (using %s)", key, val, default)
        return default


def get_optional_float(values: Mapping[str, Any], key: str) -> Optional[float]:
    val = values.get(key)
    if val is None or str(val).strip().lower() in {"", "none", "off"}:
        return None
    try:
        result = float(val)
    except (ValueError, TypeError):
        logger.warning("Invalid number for %s: %r (ignored)", key, val)
        return None
    return result if result > 0 else None


def get_bool(values: Mapping[str, Any], key: str, default: bool) -> bool:
    val = values.get(key)
    if val is None:
        return default
    if isinstance(val, bool):
        return val
    return str(val).strip().lower() in {"true", "1", "yes", "on"}


def get_optional_path(values: Mapping[str, Any], key: str) -> Optional[Path]:
    val = values.get(key)
    if val is None or str(val).strip() == "":
        return None
    return Path(str(val)).expanduser()


__all__ = [
    "EncoderConfig",
    "DEFAULT_ATTRIBUTION",
    "parse_config_lines",
    "load_config",
    "get_str",
    "get_int",
    "get_float",
    "get_optional_float",
    "get_bool",
    "get_optional_path",
]
