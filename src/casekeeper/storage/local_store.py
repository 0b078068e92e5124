"""
Primary key-value backend: a small, synchronous, string-only store.

This is the on-disk counterpart of a browser's ``localStorage``.  All entries
live in memory and are mirrored to a single JSON document that is rewritten
atomically after every mutation.  Capacity is counted the way browsers count
it: the total number of characters in keys plus values.

Store layout:
    <data_dir>/
        local_storage.json        # {"version": 1, "items": {key: value}}
        local_storage.json.corrupt-<ts>   # set aside if it fails to decode
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Iterator, Mapping
from pathlib import Path

from .errors import QuotaExceededError, StorageError
from .fs_utils import atomic_write_text

log = logging.getLogger(__name__)

__all__ = ["LocalStore", "DEFAULT_QUOTA_CHARS", "FILE_NAME"]

FILE_NAME = "local_storage.json"
DEFAULT_QUOTA_CHARS = 5 * 1024 * 1024  # same order as browser localStorage
_FORMAT_VERSION = 1


def _entry_size(key: str, value: str) -> int:
    return len(key) + len(value)


class LocalStore:
    """Capacity-limited string store persisted as one JSON file."""

    backend_name = "primary"

    def __init__(self, path: str | Path, *, quota_chars: int = DEFAULT_QUOTA_CHARS):
        if quota_chars <= 0:
            raise ValueError("quota_chars must be positive")
        self.path = Path(path)
        self.quota_chars = quota_chars
        self._items: dict[str, str] = {}
        self._used = 0
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._load()

    # ------------------------------------------------------------------
    # Loading / flushing

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
            items = payload["items"]
            if not isinstance(items, dict):
                raise TypeError("items is not an object")
            self._items = {str(k): str(v) for k, v in items.items()}
        except (OSError, ValueError, KeyError, TypeError) as exc:
            aside = self.path.with_name(f"{self.path.name}.corrupt-{int(time.time())}")
            log.error("Primary store %s is unreadable (%s); moved to %s", self.path, exc, aside)
            self.path.replace(aside)
            self._items = {}
        self._used = sum(_entry_size(k, v) for k, v in self._items.items())
        log.debug("Loaded %d primary entries (%d chars)", len(self._items), self._used)

    def _flush(self) -> None:
        doc = {"version": _FORMAT_VERSION, "items": self._items}
        atomic_write_text(self.path, json.dumps(doc, ensure_ascii=False))

    # ------------------------------------------------------------------
    # Capacity

    @property
    def used_chars(self) -> int:
        return self._used

    @property
    def available_chars(self) -> int:
        return self.quota_chars - self._used

    def _delta_for(self, entries: Mapping[str, str]) -> int:
        delta = 0
        for key, value in entries.items():
            delta += _entry_size(key, value)
            old = self._items.get(key)
            if old is not None:
                delta -= _entry_size(key, old)
        return delta

    # ------------------------------------------------------------------
    # Public API

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self.set_items({key: value})

    def set_items(self, entries: Mapping[str, str]) -> None:
        """Write all ``entries`` or none of them."""

        if not entries:
            return
        delta = self._delta_for(entries)
        if self._used + delta > self.quota_chars:
            requested = sum(_entry_size(k, v) for k, v in entries.items())
            raise QuotaExceededError(
                self.backend_name, requested, self.available_chars + (requested - delta)
            )

        previous = {key: self._items.get(key) for key in entries}
        self._items.update(entries)
        try:
            self._flush()
        except OSError as exc:
            for key, old in previous.items():
                if old is None:
                    self._items.pop(key, None)
                else:
                    self._items[key] = old
            raise StorageError(f"Could not write primary store {self.path}: {exc}") from exc
        self._used += delta

    def remove_item(self, key: str) -> bool:
        """Remove ``key``; return True when it existed."""

        old = self._items.pop(key, None)
        if old is None:
            return False
        try:
            self._flush()
        except OSError as exc:
            self._items[key] = old
            raise StorageError(f"Could not write primary store {self.path}: {exc}") from exc
        self._used -= _entry_size(key, old)
        return True

    def keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self._items if k.startswith(prefix))

    def __contains__(self, key: object) -> bool:
        return key in self._items

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())
