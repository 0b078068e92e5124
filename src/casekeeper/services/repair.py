"""Best-effort cleanup of attachment blobs no live case references."""

from __future__ import annotations

import logging

from casekeeper.services.attachments import DATA_KEY_PREFIX, INDEX_KEY_PREFIX, AttachmentStore
from casekeeper.services.repository import CaseRepository
from casekeeper.storage.adapter import StorageAdapter
from casekeeper.storage.errors import StorageError

log = logging.getLogger(__name__)

__all__ = ["find_orphan_blobs", "purge_orphan_blobs"]


def _live_keys(repository: CaseRepository) -> set[str]:
    live: set[str] = set()
    for records in repository.state().values():
        for record in records:
            live.add(AttachmentStore.index_key(record.case_id))
            live.update(meta.data_key for meta in record.attachments)
    return live


async def find_orphan_blobs(adapter: StorageAdapter, repository: CaseRepository) -> list[str]:
    """Return blob and side-index keys that no live record references."""

    live = _live_keys(repository)
    candidates = await adapter.list_keys(DATA_KEY_PREFIX) + await adapter.list_keys(INDEX_KEY_PREFIX)
    return sorted(key for key in candidates if key not in live)


async def purge_orphan_blobs(adapter: StorageAdapter, repository: CaseRepository) -> int:
    """Delete every orphan found by :func:`find_orphan_blobs`; returns the count removed."""

    removed = 0
    for key in await find_orphan_blobs(adapter, repository):
        try:
            if await adapter.delete(key):
                removed += 1
        except StorageError as exc:
            log.warning("Could not purge orphan %s: %s", key, exc)
    log.info("Purged %d orphan key(s)", removed)
    return removed
