from __future__ import annotations

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


def ensure_parent_dir(path: Path) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        # One retry with normalized separators; a second failure surfaces
        # from the write that follows.
        normalized = Path(os.path.normpath(str(path.parent).replace("\\", "/")))
        logger.warning("mkdir failed for %s (%s); retrying as %s", path.parent, e, normalized)
        try:
            normalized.mkdir(parents=True, exist_ok=True)
        except OSError as retry_error:
            logger.error("mkdir retry failed for %s: %s", normalized, retry_error)


def write_bytes(path: Path, data: bytes) -> int:
    ensure_parent_dir(path)
    path.write_bytes(data)
    return len(data)


def write_text(path: Path, text: str) -> int:
    return write_bytes(path, text.encode("utf-8"))


def remove_partial(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("could not remove partial file %s: %s", path, e)
