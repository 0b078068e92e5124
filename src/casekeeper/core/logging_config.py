# CaseKeeper
# Copyright © 2025 The CaseKeeper Authors
# Licensed under CC BY-NC-SA 4.0 International
# http://creativecommons.org/licenses/by-nc-sa/4.0/

"""Logging configuration with file rotation for the command-line tool."""

from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

__all__ = ["setup_logging", "get_log_directory"]

PACKAGE_LOGGER = "casekeeper"


def setup_logging(
    app_name: str = "CaseKeeper",
    console_level: int = logging.WARNING,
    *,
    log_dir: Path | None = None,
) -> Path:
    """
    Configure the ``casekeeper`` logger hierarchy.

    Creates two log files:
    - casekeeper.log: DEBUG+ messages (10 MB per file, 5 rotations)
    - errors.log: ERROR+ messages only (5 MB per file, 3 rotations)

    Args:
        app_name: Application name for the log directory
        console_level: Minimum level for console output (stderr)
        log_dir: Override the platform log directory

    Returns:
        Path to the log directory
    """
    log_dir = Path(log_dir) if log_dir is not None else _get_log_directory(app_name)
    log_dir.mkdir(parents=True, exist_ok=True)

    detailed_formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    simple_formatter = logging.Formatter("%(levelname)-8s | %(name)s | %(message)s")

    pkg_logger = logging.getLogger(PACKAGE_LOGGER)
    pkg_logger.setLevel(logging.DEBUG)
    # Calling twice must not duplicate output
    for handler in list(pkg_logger.handlers):
        pkg_logger.removeHandler(handler)
        handler.close()

    app_log_path = log_dir / "casekeeper.log"
    app_handler = RotatingFileHandler(
        app_log_path,
        maxBytes=10 * 1024 * 1024,  # 10 MB
        backupCount=5,
        encoding="utf-8",
    )
    app_handler.setLevel(logging.DEBUG)
    app_handler.setFormatter(detailed_formatter)
    pkg_logger.addHandler(app_handler)

    error_log_path = log_dir / "errors.log"
    error_handler = RotatingFileHandler(
        error_log_path,
        maxBytes=5 * 1024 * 1024,  # 5 MB
        backupCount=3,
        encoding="utf-8",
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(detailed_formatter)
    pkg_logger.addHandler(error_handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(simple_formatter)
    pkg_logger.addHandler(console_handler)

    # The writer thread logs every statement at DEBUG; keep it off the console
    logging.getLogger("casekeeper.storage.db_writer").setLevel(logging.INFO)

    log = logging.getLogger(__name__)
    log.info(f"{app_name} logging initialized")
    log.info(f"Log directory: {log_dir}")
    log.info(f"Platform: {sys.platform}, Python: {sys.version.split()[0]}")
    return log_dir


def _get_log_directory(app_name: str) -> Path:
    """
    Get platform-specific log directory.

    - Windows: %LOCALAPPDATA%\\AppName\\logs
    - macOS: ~/Library/Logs/AppName
    - Linux: $XDG_STATE_HOME or ~/.local/state/AppName/logs
    """
    home = Path.home()
    if sys.platform == "win32":
        base = Path(os.environ.get("LOCALAPPDATA", home / "AppData" / "Local"))
        return base / app_name / "logs"
    if sys.platform == "darwin":
        return home / "Library" / "Logs" / app_name
    xdg_state_home = os.environ.get("XDG_STATE_HOME", home / ".local" / "state")
    return Path(xdg_state_home) / app_name / "logs"


def get_log_directory(app_name: str = "CaseKeeper") -> Path:
    return _get_log_directory(app_name)
