"""Best-effort filesystem helpers.

Every helper here is "fire and forget": failures are logged at debug level
and never raise, so cleanup paths can call them unconditionally.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Union

from .logging_utils import get_module_logger

logger = get_module_logger("FileUtils")

PathLike = Union[str, Path]


def delete_no_fail(path: PathLike) -> bool:
    """Delete ``path`` if it exists. Returns True when a file was removed."""
    try:
        Path(path).unlink()
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.debug("Could not delete %s: %s", path, e)
        return False
    logger.debug("Deleted %s", path)
    return True


def delete_all_no_fail(paths: Iterable[PathLike]) -> int:
    """Delete every path in ``paths``; returns how many files were removed."""
    return sum(1 for path in paths if delete_no_fail(path))


__all__ = ["delete_no_fail", "delete_all_no_fail"]
