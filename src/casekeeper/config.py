"""Store configuration resolved from defaults and environment variables."""

from __future__ import annotations

import logging
import os
import platform
from dataclasses import dataclass, field
from pathlib import Path

from casekeeper.services.attachments import MAX_ATTACHMENT_BYTES, MAX_FILES_PER_CASE
from casekeeper.storage.blob_store import DEFAULT_CHUNK_SIZE, DEFAULT_MAX_BYTES
from casekeeper.storage.local_store import DEFAULT_QUOTA_CHARS

log = logging.getLogger(__name__)

__all__ = ["StoreConfig", "default_data_dir", "APP_NAME"]

APP_NAME = "CaseKeeper"
HOME_ENV = "CASEKEEPER_HOME"
PRIMARY_QUOTA_ENV = "CASEKEEPER_PRIMARY_QUOTA"
SECONDARY_MAX_ENV = "CASEKEEPER_SECONDARY_MAX_BYTES"
FEATURES_ENV = "CK_FEATURES"
BLOB_STORE_FEATURE = "blob_store"

_OFF_VALUES = {"0", "false", "off", "no", "disabled"}
_ON_VALUES = {"1", "true", "on", "yes", "enabled"}


def default_data_dir(app_name: str = APP_NAME) -> Path:
    """Return the per-user data directory for ``app_name``."""

    system = platform.system().lower()
    home = Path.home()
    if system == "darwin":
        return home / "Library" / "Application Support" / app_name
    if system == "windows":
        return Path(os.environ.get("LOCALAPPDATA", str(home / "AppData" / "Local"))) / app_name
    return Path(os.environ.get("XDG_DATA_HOME", str(home / ".local" / "share"))) / app_name


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        log.warning("Ignoring %s=%r: not an integer", name, raw)
        return default
    if value <= 0:
        log.warning("Ignoring %s=%r: must be positive", name, raw)
        return default
    return value


def _feature_env(name: str, default: bool) -> bool:
    """Look ``name`` up in the comma-separated ``CK_FEATURES`` switches.

    ``flag`` enables, ``!flag`` or ``-flag`` disables and ``flag=on|off`` sets
    explicitly; dashes and underscores are interchangeable.  The last mention wins.
    """
    enabled = default
    for token in os.environ.get(FEATURES_ENV, "").split(","):
        token = token.strip().lower()
        value = True
        if token.startswith(("!", "-")):
            token, value = token[1:], False
        elif "=" in token:
            token, raw = (part.strip() for part in token.split("=", 1))
            if raw not in _ON_VALUES | _OFF_VALUES:
                log.warning("Ignoring %s switch %r: expected on or off", FEATURES_ENV, token)
                continue
            value = raw in _ON_VALUES
        if token.replace("-", "_") == name:
            enabled = value
    return enabled


@dataclass
class StoreConfig:
    data_dir: Path = field(default_factory=default_data_dir)
    primary_quota_chars: int = DEFAULT_QUOTA_CHARS
    secondary_max_bytes: int = DEFAULT_MAX_BYTES
    secondary_enabled: bool = True
    attachment_max_bytes: int = MAX_ATTACHMENT_BYTES
    max_files_per_case: int = MAX_FILES_PER_CASE
    chunk_size: int = DEFAULT_CHUNK_SIZE

    def __post_init__(self) -> None:
        self.data_dir = Path(self.data_dir).expanduser()

    @property
    def primary_path(self) -> Path:
        return self.data_dir / "local_storage.json"

    @property
    def secondary_path(self) -> Path:
        return self.data_dir / "blob_store.sqlite"

    @classmethod
    def from_env(cls, data_dir: str | os.PathLike[str] | None = None) -> StoreConfig:
        """Build a config from the environment; an explicit ``data_dir`` wins."""

        if data_dir is None:
            env_home = os.environ.get(HOME_ENV, "").strip()
            data_dir = Path(env_home) if env_home else default_data_dir()
        return cls(
            data_dir=Path(data_dir),
            primary_quota_chars=_int_env(PRIMARY_QUOTA_ENV, DEFAULT_QUOTA_CHARS),
            secondary_max_bytes=_int_env(SECONDARY_MAX_ENV, DEFAULT_MAX_BYTES),
            secondary_enabled=_feature_env(BLOB_STORE_FEATURE, default=True),
        )
