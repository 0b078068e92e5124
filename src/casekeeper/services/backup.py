"""
Whole-repository snapshots stored next to the data they capture.

A snapshot is one JSON document ``{cases, caseCounter, date, settings}``
written under ``backup_<timestamp>``.  Snapshots are never modified after
creation; restore reads one back, builds the replacement state in memory and
writes every category, the counter and settings in a single adapter pass.
Attachment blobs are not captured; restored records keep pointing at the
same ``dataKey``s.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

import pydantic

from casekeeper.core.models import BackupDocument, CaseCategory
from casekeeper.services.repository import CaseRepository
from casekeeper.storage.adapter import StorageAdapter
from casekeeper.storage.errors import NotFoundError, ParseError

log = logging.getLogger(__name__)

__all__ = ["BackupManager", "SnapshotInfo", "SNAPSHOT_PREFIX", "snapshot_id_for"]

SNAPSHOT_PREFIX = "backup_"


def snapshot_id_for(moment: datetime) -> str:
    """Key for a snapshot taken at ``moment`` (ISO-8601 with ``:``/``.`` as ``-``)."""

    stamp = moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%fZ")
    return SNAPSHOT_PREFIX + stamp


def _parse_snapshot_id(snapshot_id: str) -> datetime | None:
    stamp = snapshot_id.removeprefix(SNAPSHOT_PREFIX)[:27]
    for fmt in ("%Y-%m-%dT%H-%M-%S-%fZ", "%Y-%m-%dT%H-%M-%S-%f"):
        try:
            return datetime.strptime(stamp, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


@dataclass(frozen=True)
class SnapshotInfo:
    """Metadata about a single snapshot."""

    id: str
    created: datetime
    size_bytes: int
    record_count: int
    readable: bool = True


def _decode(snapshot_id: str, raw: str | bytes) -> BackupDocument:
    try:
        return BackupDocument.model_validate_json(raw)
    except pydantic.ValidationError as exc:
        raise ParseError(f"Snapshot {snapshot_id} cannot be decoded: {exc}") from exc


class BackupManager:
    """Create, list, restore, delete and prune repository snapshots."""

    def __init__(self, repository: CaseRepository, adapter: StorageAdapter | None = None):
        self.repository = repository
        self.adapter = adapter or repository.adapter

    async def create_snapshot(self) -> str:
        """Capture the current repository state; returns the new snapshot id."""

        now = datetime.now(timezone.utc)
        document = BackupDocument(
            cases=self.repository.state(),
            case_counter=self.repository.counter,
            date=now.isoformat(),
            settings=self.repository.settings,
        )

        base_id = snapshot_id_for(now)
        existing = set(await self.adapter.list_keys(base_id))
        snapshot_id = base_id
        suffix = 1
        while snapshot_id in existing:
            snapshot_id = f"{base_id}-{suffix}"
            suffix += 1

        await self.adapter.put(snapshot_id, json.dumps(document.to_document(), ensure_ascii=False))
        log.info(f"Created snapshot {snapshot_id} ({document.record_count()} cases)")
        return snapshot_id

    async def list_snapshots(self) -> list[SnapshotInfo]:
        """Every stored snapshot, newest first, with size and record count."""

        infos: list[SnapshotInfo] = []
        for key in await self.adapter.list_keys(SNAPSHOT_PREFIX):
            raw = await self.adapter.get(key)
            if raw is None:
                continue
            size = len(raw.encode("utf-8")) if isinstance(raw, str) else len(raw)
            fallback_created = _parse_snapshot_id(key) or datetime.min.replace(tzinfo=timezone.utc)
            try:
                document = _decode(key, raw)
            except ParseError as exc:
                log.warning(f"Listing unreadable snapshot {key}: {exc}")
                infos.append(SnapshotInfo(key, fallback_created, size, 0, readable=False))
                continue
            try:
                created = datetime.fromisoformat(document.date.replace("Z", "+00:00"))
                if created.tzinfo is None:
                    created = created.replace(tzinfo=timezone.utc)
            except ValueError:
                created = fallback_created
            infos.append(SnapshotInfo(key, created, size, document.record_count()))

        infos.sort(key=lambda info: (info.created, info.id), reverse=True)
        return infos

    async def restore_snapshot(self, snapshot_id: str) -> BackupDocument:
        """Replace the repository state with the snapshot's.

        The counter is set to the snapshot's value so the restored repository
        matches the snapshot exactly.

        Raises:
            NotFoundError: No snapshot is stored under ``snapshot_id``.
            ParseError: The stored document cannot be decoded.
        """
        raw = await self.adapter.get(snapshot_id)
        if raw is None:
            raise NotFoundError("snapshot", snapshot_id)
        document = _decode(snapshot_id, raw)

        cases = {
            category: [r.model_copy(update={"category": category}) for r in records]
            for category, records in document.cases.items()
        }
        await self.repository.replace_state(cases, document.case_counter, document.settings)
        log.info(
            f"Restored snapshot {snapshot_id}: "
            + ", ".join(f"{c.slug}={len(cases.get(c, ()))}" for c in CaseCategory)
        )
        return document

    async def delete_snapshot(self, snapshot_id: str) -> bool:
        """Remove the snapshot key only; attachment blobs are left alone."""

        if not snapshot_id.startswith(SNAPSHOT_PREFIX):
            raise NotFoundError("snapshot", snapshot_id)
        removed = await self.adapter.delete(snapshot_id)
        if removed:
            log.info(f"Deleted snapshot {snapshot_id}")
        return removed

    async def prune_snapshots(self, keep: int | None = None) -> int:
        """
        Remove old snapshots, keeping only the most recent ``keep``.

        Args:
            keep: Number to keep; defaults to the ``backupCount`` setting.

        Returns:
            Number of snapshots deleted

        Raises:
            ValueError: If keep < 1
        """
        if keep is None:
            keep = self.repository.settings.backup_count
        if keep < 1:
            raise ValueError("keep must be at least 1")

        snapshots = await self.list_snapshots()
        removed = 0
        for info in snapshots[keep:]:
            if await self.adapter.delete(info.id):
                removed += 1
        log.info(f"Pruned {removed} snapshot(s), kept {min(keep, len(snapshots))}")
        return removed
