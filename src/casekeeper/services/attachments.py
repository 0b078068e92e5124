# CaseKeeper
# Copyright © 2025 The CaseKeeper Authors
# Licensed under CC BY-NC-SA 4.0 International
# http://creativecommons.org/licenses/by-nc-sa/4.0/

"""
Attachment payload storage, kept out of the case records that reference them.

Each attachment is written once as a blob under
``doc_data_<caseId>_<attachmentId>``; the case record only carries the
:class:`~casekeeper.core.models.AttachmentMetadata` pointing at that key.  A
side index ``docs_list_<caseId>`` lists the attachment ids of every case so a
case delete can cascade even when the record's own metadata is stale.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
import time
import uuid
import weakref
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import PurePath

from casekeeper.core.models import AttachmentMetadata, AttachmentUpload
from casekeeper.storage.adapter import StorageAdapter
from casekeeper.storage.errors import StorageError, ValidationError

log = logging.getLogger(__name__)

__all__ = [
    "AttachmentStore",
    "LoadedAttachment",
    "MAX_ATTACHMENT_BYTES",
    "MAX_FILES_PER_CASE",
    "DATA_KEY_PREFIX",
    "INDEX_KEY_PREFIX",
    "file_kind",
]

MAX_ATTACHMENT_BYTES = 5 * 1024 * 1024  # 5 MiB
MAX_FILES_PER_CASE = 20
DATA_KEY_PREFIX = "doc_data_"
INDEX_KEY_PREFIX = "docs_list_"

_EXTENSIONS: dict[str, tuple[str, ...]] = {
    "images": ("jpg", "jpeg", "png", "gif", "webp", "bmp"),
    "documents": ("pdf",),
    "word": ("doc", "docx"),
    "excel": ("xls", "xlsx", "csv"),
    "text": ("txt",),
}
_MIME_MARKERS: dict[str, tuple[str, ...]] = {
    "images": ("image/",),
    "documents": ("/pdf",),
    "word": ("msword", "wordprocessingml"),
    "excel": ("ms-excel", "spreadsheetml", "/csv"),
    "text": ("text/plain",),
}


def file_kind(mime: str, name: str = "") -> str:
    """Classify a file as images/documents/word/excel/text/other."""

    extension = PurePath(name).suffix.lower().lstrip(".")
    for kind, extensions in _EXTENSIONS.items():
        if extension in extensions:
            return kind
    mime = (mime or "").lower()
    for kind, markers in _MIME_MARKERS.items():
        if any(marker in mime for marker in markers):
            return kind
    return "other"


def _new_attachment_id() -> str:
    return f"doc_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def _as_bytes(value: str | bytes) -> bytes:
    """Normalize a stored payload; legacy entries hold base64 data URLs."""

    if isinstance(value, bytes):
        return value
    if value.startswith("data:") and ";base64," in value:
        try:
            return base64.b64decode(value.split(";base64,", 1)[1], validate=True)
        except (binascii.Error, ValueError):
            log.warning("Stored data URL is not valid base64; returning raw text")
    return value.encode("utf-8")


@dataclass(frozen=True)
class LoadedAttachment:
    """Metadata paired with its payload, or ``None`` when the blob is missing."""

    metadata: AttachmentMetadata
    data: bytes | None

    @property
    def missing(self) -> bool:
        return self.data is None


class AttachmentStore:
    """Validate, persist, load and delete attachment payloads."""

    def __init__(
        self,
        adapter: StorageAdapter,
        *,
        max_bytes: int = MAX_ATTACHMENT_BYTES,
        max_files_per_case: int = MAX_FILES_PER_CASE,
    ):
        self.adapter = adapter
        self.max_bytes = max_bytes
        self.max_files_per_case = max_files_per_case
        # Serializes read-modify-write of each case's side index.
        self._index_locks: weakref.WeakKeyDictionary[
            asyncio.AbstractEventLoop, dict[str, asyncio.Lock]
        ] = weakref.WeakKeyDictionary()

    @staticmethod
    def data_key(case_id: str, attachment_id: str) -> str:
        return f"{DATA_KEY_PREFIX}{case_id}_{attachment_id}"

    @staticmethod
    def index_key(case_id: str) -> str:
        return f"{INDEX_KEY_PREFIX}{case_id}"

    # ------------------------------------------------------------------
    # Side index

    async def attachment_ids(self, case_id: str) -> list[str]:
        """Return the attachment ids tracked for ``case_id``."""

        raw = await self.adapter.get(self.index_key(case_id))
        if raw is None:
            return []
        try:
            ids = json.loads(raw)
            if not isinstance(ids, list):
                raise ValueError("index is not a list")
            return [str(i) for i in ids]
        except ValueError as exc:
            log.warning("Attachment index for case %s is unreadable (%s); rescanning", case_id, exc)
            prefix = f"{DATA_KEY_PREFIX}{case_id}_"
            return [key[len(prefix) :] for key in await self.adapter.list_keys(prefix)]

    def _index_lock(self, case_id: str) -> asyncio.Lock:
        locks = self._index_locks.setdefault(asyncio.get_running_loop(), {})
        lock = locks.get(case_id)
        if lock is None:
            lock = locks[case_id] = asyncio.Lock()
        return lock

    async def _write_index(self, case_id: str, ids: Sequence[str]) -> None:
        if ids:
            await self.adapter.put(self.index_key(case_id), json.dumps(list(ids)))
        else:
            await self.adapter.delete(self.index_key(case_id))

    # ------------------------------------------------------------------
    # Save / load

    def _validate(self, case_id: str, upload: AttachmentUpload) -> None:
        if not case_id:
            raise ValidationError("Attachments need a case id")
        if not upload.name:
            raise ValidationError("Attachment file name is empty")
        if upload.size > self.max_bytes:
            raise ValidationError(
                f"Attachment {upload.name!r} is {upload.size} bytes; the limit is {self.max_bytes}"
            )

    async def save_attachment(self, case_id: str, upload: AttachmentUpload) -> AttachmentMetadata:
        """Persist ``upload`` for ``case_id`` and return its metadata.

        Raises:
            ValidationError: Oversized, unnamed or over-limit uploads (nothing is written).
            QuotaExceededError: Neither backend had room for the payload.
        """
        self._validate(case_id, upload)
        async with self._index_lock(case_id):
            ids = await self.attachment_ids(case_id)
            if len(ids) >= self.max_files_per_case:
                raise ValidationError(
                    f"Case {case_id} already has {len(ids)} attachments"
                    f" (limit {self.max_files_per_case})"
                )

            attachment_id = _new_attachment_id()
            key = self.data_key(case_id, attachment_id)
            await self.adapter.put(key, upload.data)
            try:
                await self._write_index(case_id, [*ids, attachment_id])
            except StorageError:
                log.error("Index update failed for %s; removing blob %s", case_id, key)
                await self.adapter.delete(key)
                raise

        log.info("Stored attachment %s (%d bytes) for case %s", attachment_id, upload.size, case_id)
        return AttachmentMetadata(
            id=attachment_id,
            name=upload.name,
            size=upload.size,
            mime=upload.mime,
            category=upload.category,
            kind=file_kind(upload.mime, upload.name),
            date=datetime.now(timezone.utc).isoformat(),
            data_key=key,
        )

    async def _load_one(self, metadata: AttachmentMetadata) -> LoadedAttachment:
        try:
            value = await self.adapter.get(metadata.data_key)
        except StorageError as exc:
            log.warning("Attachment %s could not be read: %s", metadata.data_key, exc)
            value = None
        if value is None:
            log.debug("Attachment blob %s is missing", metadata.data_key)
            return LoadedAttachment(metadata, None)
        return LoadedAttachment(metadata, _as_bytes(value))

    async def load_attachments(
        self, metadata_list: Iterable[AttachmentMetadata]
    ) -> list[LoadedAttachment]:
        """Fetch every referenced blob concurrently; unresolved blobs come back missing."""

        return list(await asyncio.gather(*(self._load_one(m) for m in metadata_list)))

    # ------------------------------------------------------------------
    # Delete

    async def delete_attachment(self, case_id: str, metadata: AttachmentMetadata) -> bool:
        """Remove one attachment blob and drop it from the case's side index."""

        existed = await self.adapter.delete(metadata.data_key)
        async with self._index_lock(case_id):
            ids = await self.attachment_ids(case_id)
            if metadata.id in ids:
                await self._write_index(case_id, [i for i in ids if i != metadata.id])
        return existed

    async def delete_attachments_for_case(
        self, case_id: str, metadata_list: Iterable[AttachmentMetadata] = ()
    ) -> int:
        """Delete every blob of ``case_id`` and clear its side index.

        Individual failures are logged, never raised, so the owning case delete
        can still complete.  Deleting blobs that are already gone is a no-op.
        Returns the number of blobs that existed and were removed.
        """
        keys = {m.data_key for m in metadata_list}
        async with self._index_lock(case_id):
            try:
                keys.update(self.data_key(case_id, i) for i in await self.attachment_ids(case_id))
            except StorageError as exc:
                log.warning("Could not read attachment index for case %s: %s", case_id, exc)

            results = await asyncio.gather(
                *(self.adapter.delete(key) for key in sorted(keys)), return_exceptions=True
            )
            removed = 0
            for key, result in zip(sorted(keys), results):
                if isinstance(result, BaseException):
                    log.warning("Could not delete attachment blob %s: %s", key, result)
                elif result:
                    removed += 1

            try:
                await self.adapter.delete(self.index_key(case_id))
            except StorageError as exc:
                log.warning("Could not delete attachment index for case %s: %s", case_id, exc)

        log.info("Deleted %d attachment blob(s) for case %s", removed, case_id)
        return removed
