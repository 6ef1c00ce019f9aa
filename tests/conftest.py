"""Shared pytest configuration and fixtures for the capture encoder test suite."""

import base64
import shutil
import sys
from pathlib import Path

import pytest

# Ensure the project root is in the path for imports
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from capture_encoder.core.config import EncoderConfig  # noqa: E402


PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 24


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_collection_modifyitems(config, items):
    """Skip tests that need the real encoding tools when they are not installed."""
    if shutil.which("ffmpeg") and shutil.which("mp4fpsmod"):
        return

    skip_tools = pytest.mark.skip(reason="ffmpeg and mp4fpsmod must be on PATH")
    for item in items:
        if "tools" in item.keywords:
            item.add_marker(skip_tools)


# =============================================================================
# Shared Fixtures
# =============================================================================

@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def encoder_config(tmp_path: Path) -> EncoderConfig:
    """Config writing frames and videos under a temporary directory."""
    config = EncoderConfig(
        frame_dir=tmp_path / "frames",
        video_dir=tmp_path / "videos",
    )
    config.ensure_directories()
    return config


@pytest.fixture
def png_data_url() -> str:
    """A frame payload exactly as the browser client sends it."""
    return "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode("ascii")
