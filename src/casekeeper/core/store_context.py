"""Wiring of one open case store: adapter, services and their shared repository."""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass

from casekeeper.config import StoreConfig
from casekeeper.services.attachments import AttachmentStore
from casekeeper.services.backup import BackupManager
from casekeeper.services.import_merge import ImportMergeEngine
from casekeeper.services.repository import CaseRepository
from casekeeper.storage.adapter import StorageAdapter
from casekeeper.storage.blob_store import BlobStore
from casekeeper.storage.local_store import LocalStore

log = logging.getLogger(__name__)

__all__ = ["CaseStoreContext", "open_case_store", "build_adapter"]


@dataclass
class CaseStoreContext:
    """Everything a caller needs to work with one data directory."""

    config: StoreConfig
    adapter: StorageAdapter
    attachments: AttachmentStore
    repository: CaseRepository
    backups: BackupManager
    importer: ImportMergeEngine

    async def close(self) -> None:
        await self.adapter.close()

    async def __aenter__(self) -> "CaseStoreContext":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


def build_adapter(config: StoreConfig) -> StorageAdapter:
    primary = LocalStore(config.primary_path, quota_chars=config.primary_quota_chars)
    opener = None
    if config.secondary_enabled:
        opener = functools.partial(
            BlobStore.open,
            config.secondary_path,
            max_bytes=config.secondary_max_bytes,
            chunk_size=config.chunk_size,
        )
    return StorageAdapter(primary, opener)


async def open_case_store(config: StoreConfig | None = None, **repository_options) -> CaseStoreContext:
    """Open the store in ``config.data_dir`` and load the repository.

    ``repository_options`` (``pre_save_hooks``/``post_save_hooks``) are passed
    to :class:`CaseRepository`.
    """
    config = config or StoreConfig.from_env()
    adapter = build_adapter(config)
    await adapter.initialize()
    attachments = AttachmentStore(
        adapter,
        max_bytes=config.attachment_max_bytes,
        max_files_per_case=config.max_files_per_case,
    )
    repository = CaseRepository(adapter, attachments, **repository_options)
    try:
        await repository.load()
    except Exception:
        await adapter.close()
        raise
    log.info(
        "Opened case store at %s (secondary %s)",
        config.data_dir,
        "active" if adapter.secondary_active else "inactive",
    )
    return CaseStoreContext(
        config=config,
        adapter=adapter,
        attachments=attachments,
        repository=repository,
        backups=BackupManager(repository, adapter),
        importer=ImportMergeEngine(repository),
    )
