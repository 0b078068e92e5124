import asyncio
import os
from pathlib import Path

import pytest

from casekeeper.config import StoreConfig
from casekeeper.core.models import AttachmentUpload, CaseCategory, CaseRecord
from casekeeper.services.attachments import AttachmentStore
from casekeeper.services.repository import CaseRepository
from casekeeper.storage.adapter import StorageAdapter
from casekeeper.storage.blob_store import BlobStore
from casekeeper.storage.errors import BackendUnavailableError
from casekeeper.storage.local_store import LocalStore

MIB = 1024 * 1024


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in (
        "CK_FEATURES",
        "CASEKEEPER_HOME",
        "CASEKEEPER_PRIMARY_QUOTA",
        "CASEKEEPER_SECONDARY_MAX_BYTES",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def store_config(tmp_path) -> StoreConfig:
    return StoreConfig(data_dir=tmp_path / "data")


def run(coro):
    return asyncio.run(coro)


async def failing_opener() -> BlobStore:
    raise BackendUnavailableError("blob store not supported here")


def make_adapter(
    data_dir: Path,
    *,
    secondary: bool = True,
    primary_quota: int = 5 * MIB,
    secondary_max: int = 64 * MIB,
    opener=None,
) -> StorageAdapter:
    primary = LocalStore(Path(data_dir) / "local_storage.json", quota_chars=primary_quota)
    if opener is None and secondary:

        async def opener() -> BlobStore:
            return await BlobStore.open(Path(data_dir) / "blob_store.sqlite", max_bytes=secondary_max)

    return StorageAdapter(primary, opener)


def make_repository(adapter: StorageAdapter, **options) -> CaseRepository:
    return CaseRepository(adapter, AttachmentStore(adapter), **options)


def make_case(case_id: str, category=CaseCategory.MASAREEF, **fields) -> CaseRecord:
    return CaseRecord(caseId=case_id, caseCode=category, **fields)


def payload(size: int) -> bytes:
    # incompressible, so stored size tracks the raw size
    return os.urandom(size)


def upload(name: str = "scan.png", size: int = MIB, mime: str = "image/png") -> AttachmentUpload:
    return AttachmentUpload(name=name, data=payload(size), mime=mime)
