"""Centralized path constants for the capture encoder."""

from __future__ import annotations

import os
from pathlib import Path

PACKAGE_ROOT = Path(__file__).resolve().parents[1]
PROJECT_ROOT = PACKAGE_ROOT.parent

# Configuration
CONFIG_PATH = PROJECT_ROOT / "config.txt"

# Working data (frames are transient, videos are served)
_DATA_ENV = os.environ.get("CAPTURE_ENCODER_DATA_DIR")
DATA_DIR = Path(_DATA_ENV).expanduser() if _DATA_ENV else (PROJECT_ROOT / "data")
DEFAULT_FRAME_DIR = DATA_DIR / "frames"
DEFAULT_VIDEO_DIR = DATA_DIR / "videos"
