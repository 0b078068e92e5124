"""
Uniform put/get/delete/list over the primary and secondary backends.

Write path:
    secondary (when initialized) -> on StorageError / quota -> primary
Read path:
    secondary -> not found or failure -> primary

Fallback is decided per operation.  A key written while the secondary was
unavailable (or full) lives in the primary, and a later write of the same key
may land in the secondary; after every successful write the copy on the other
backend is removed so reads never see an older value.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass

from .blob_store import BlobStore
from .errors import BackendUnavailableError, QuotaExceededError, StorageError
from .local_store import LocalStore

log = logging.getLogger(__name__)

__all__ = ["StorageAdapter", "StorageUsage", "Value", "encode_primary", "decode_primary"]

Value = str | bytes
SecondaryOpener = Callable[[], Awaitable[BlobStore]]

_TEXT_TAG = "t:"
_BYTES_TAG = "b:"


def encode_primary(value: Value) -> str:
    """Encode ``value`` for the string-only primary store."""

    if isinstance(value, str):
        return _TEXT_TAG + value
    if isinstance(value, (bytes, bytearray, memoryview)):
        return _BYTES_TAG + base64.b64encode(bytes(value)).decode("ascii")
    raise TypeError(f"Storage values must be str or bytes, not {type(value).__name__}")


def decode_primary(raw: str) -> Value:
    if raw.startswith(_BYTES_TAG):
        return base64.b64decode(raw[len(_BYTES_TAG) :])
    if raw.startswith(_TEXT_TAG):
        return raw[len(_TEXT_TAG) :]
    # Untagged values were written by something other than the adapter.
    return raw


@dataclass(frozen=True)
class StorageUsage:
    """Snapshot of how much of each backend is in use."""

    primary_used_chars: int
    primary_quota_chars: int
    secondary_active: bool
    secondary_used_bytes: int | None
    secondary_max_bytes: int | None


class StorageAdapter:
    """Route storage calls to the secondary backend with primary fallback."""

    def __init__(self, primary: LocalStore, secondary_opener: SecondaryOpener | None = None):
        self.primary = primary
        self._secondary_opener = secondary_opener
        self._secondary: BlobStore | None = None
        self._initialized = False
        self._init_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lifecycle

    @property
    def secondary_active(self) -> bool:
        return self._secondary is not None

    async def initialize(self) -> None:
        """Try to bring up the secondary backend, once per adapter lifetime."""

        if self._initialized:
            return
        async with self._init_lock:
            if self._initialized:
                return
            self._initialized = True
            if self._secondary_opener is None:
                log.info("Secondary backend disabled; using primary store only")
                return
            try:
                self._secondary = await self._secondary_opener()
            except BackendUnavailableError as exc:
                log.warning("Secondary backend unavailable, falling back to primary: %s", exc)
            except Exception as exc:
                err = BackendUnavailableError(f"{type(exc).__name__}: {exc}")
                log.warning("Secondary backend unavailable, falling back to primary: %s", err)

    async def close(self) -> None:
        if self._secondary is not None:
            await self._secondary.close()
            self._secondary = None

    async def __aenter__(self) -> "StorageAdapter":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Writes

    async def put(self, key: str, value: Value) -> None:
        await self.put_many({key: value})

    async def put_many(self, entries: Mapping[str, Value]) -> None:
        """Write every entry to one backend in one pass.

        Raises:
            QuotaExceededError: If neither backend can take the write.
            StorageError: If the primary fails for any other reason.
        """
        if not entries:
            return
        await self.initialize()
        items = dict(entries)

        if self._secondary is not None:
            try:
                await self._secondary.put_many(items)
            except QuotaExceededError as exc:
                log.warning("Secondary rejected %d key(s) (%s); trying primary", len(items), exc)
            except StorageError as exc:
                log.warning("Secondary write failed (%s); trying primary", exc)
            else:
                self._drop_primary_copies(items)
                return

        self.primary.set_items({key: encode_primary(value) for key, value in items.items()})
        log.debug("Wrote %d key(s) to primary", len(items))
        await self._drop_secondary_copies(items)

    def _drop_primary_copies(self, keys) -> None:
        for key in keys:
            if key in self.primary:
                try:
                    self.primary.remove_item(key)
                except StorageError as exc:
                    log.warning("Could not remove stale primary copy of %s: %s", key, exc)

    async def _drop_secondary_copies(self, keys) -> None:
        if self._secondary is None:
            return
        for key in keys:
            try:
                await self._secondary.delete(key)
            except StorageError as exc:
                log.warning("Could not remove stale secondary copy of %s: %s", key, exc)

    # ------------------------------------------------------------------
    # Reads / deletes

    async def get(self, key: str) -> Value | None:
        """Return the value for ``key`` or None when neither backend has it."""

        await self.initialize()
        if self._secondary is not None:
            try:
                value = await self._secondary.get(key)
            except StorageError as exc:
                log.warning("Secondary read of %s failed (%s); checking primary", key, exc)
            else:
                if value is not None:
                    return value

        raw = self.primary.get_item(key)
        return None if raw is None else decode_primary(raw)

    async def delete(self, key: str) -> bool:
        """Delete ``key`` from both backends; return True if either held it."""

        await self.initialize()
        existed = False
        failure: StorageError | None = None
        if self._secondary is not None:
            try:
                existed = await self._secondary.delete(key)
            except StorageError as exc:
                failure = exc
        try:
            existed = self.primary.remove_item(key) or existed
        except StorageError as exc:
            failure = failure or exc
        if failure is not None:
            raise failure
        return existed

    async def list_keys(self, prefix: str = "") -> list[str]:
        await self.initialize()
        keys = set(self.primary.keys(prefix))
        if self._secondary is not None:
            try:
                keys.update(await self._secondary.keys(prefix))
            except StorageError as exc:
                log.warning("Secondary key listing failed: %s", exc)
        return sorted(keys)

    async def usage(self) -> StorageUsage:
        await self.initialize()
        used = None
        if self._secondary is not None:
            try:
                used = await self._secondary.used_bytes()
            except StorageError as exc:
                log.warning("Could not read secondary usage: %s", exc)
        return StorageUsage(
            primary_used_chars=self.primary.used_chars,
            primary_quota_chars=self.primary.quota_chars,
            secondary_active=self._secondary is not None,
            secondary_used_bytes=used,
            secondary_max_bytes=self._secondary.max_bytes if self._secondary else None,
        )
