"""Registry of finished videos served from the video directory."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Dict, List, Optional

from capture_encoder.core.logging_utils import get_module_logger

logger = get_module_logger("Artifacts")


class VideoDirectoryRegistry:
    """Registers files living under ``video_dir`` and reports their public URL."""

    def __init__(self, video_dir: Path, url_prefix: str = "/videos") -> None:
        self.video_dir = Path(video_dir)
        self.url_prefix = url_prefix.rstrip("/")
        self._files: Dict[str, Dict[str, Any]] = {}

    async def add_file(self, path: Path) -> Dict[str, Any]:
        """Return ``{filename, url, size}`` for ``path``.

        Raises:
            FileNotFoundError: the file does not exist.
            ValueError: the file is outside the served directory.
        """
        path = Path(path)
        stat = await asyncio.to_thread(path.stat)
        relative = path.resolve().relative_to(self.video_dir.resolve())

        info = {
            "filename": path.name,
            "url": f"{self.url_prefix}/{relative.as_posix()}",
            "size": stat.st_size,
        }
        self._files[relative.as_posix()] = info
        logger.info("Registered %s (%d bytes)", info["url"], stat.st_size)
        return info

    def remove_file(self, path: Path) -> None:
        """Forget a registered file; unknown paths are ignored."""
        try:
            relative = Path(path).resolve().relative_to(self.video_dir.resolve())
        except ValueError:
            return
        self._files.pop(relative.as_posix(), None)

    def resolve(self, relative: str) -> Optional[Path]:
        """Map a ``/videos/<relative>`` request to an existing file, or None."""
        root = self.video_dir.resolve()
        candidate = (root / relative).resolve()
        if not candidate.is_relative_to(root) or not candidate.is_file():
            return None
        return candidate

    def files(self) -> List[Dict[str, Any]]:
        return list(self._files.values())


__all__ = ["VideoDirectoryRegistry"]
