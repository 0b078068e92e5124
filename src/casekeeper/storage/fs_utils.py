"""Atomic file helpers for the on-disk key-value store."""

from __future__ import annotations

import logging
import os
from pathlib import Path

log = logging.getLogger(__name__)

__all__ = ["atomic_write_text", "fsync_dir"]


def fsync_dir(path: Path) -> None:
    """Flush a directory entry to disk where the platform allows it."""

    if os.name == "nt":
        return
    fd = os.open(path, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def atomic_write_text(path: Path, text: str) -> None:
    """
    Write text to file atomically with fsync.

    Writes a sibling temp file, fsyncs it, then replaces the target and
    fsyncs the parent directory so the new entry survives power loss.
    """
    tmp = path.with_suffix(path.suffix + ".tmp")
    try:
        with open(tmp, "w", encoding="utf-8") as fh:
            fh.write(text)
            fh.flush()
            os.fsync(fh.fileno())

        os.replace(tmp, path)
        fsync_dir(path.parent)

    except Exception:
        if tmp.exists():
            tmp.unlink()
        raise
