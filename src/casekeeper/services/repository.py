# CaseKeeper
# Copyright © 2025 The CaseKeeper Authors
# Licensed under CC BY-NC-SA 4.0 International
# http://creativecommons.org/licenses/by-nc-sa/4.0/

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any

import pydantic

from casekeeper.core.case_ids import format_case_id
from casekeeper.core.models import (
    AttachmentMetadata,
    CaseCategory,
    CaseRecord,
    Settings,
    record_timestamp,
)
from casekeeper.services.attachments import INDEX_KEY_PREFIX, AttachmentStore
from casekeeper.storage.adapter import StorageAdapter
from casekeeper.storage.errors import NotFoundError, ParseError, StorageError, ValidationError

log = logging.getLogger(__name__)

__all__ = [
    "CaseRepository",
    "SaveOutcome",
    "DeleteOutcome",
    "COUNTER_KEY",
    "SETTINGS_KEY",
    "fill_case_date_iso",
    "parse_records",
]

COUNTER_KEY = "caseCounter"
SETTINGS_KEY = "charityAppSettings"
ALL = "all"

PreSaveHook = Callable[[CaseRecord], CaseRecord]
PostSaveHook = Callable[[CaseRecord, "SaveOutcome"], None]


class SaveOutcome(str, Enum):
    INSERTED = "inserted"
    UPDATED = "updated"


class DeleteOutcome(str, Enum):
    DELETED = "deleted"
    NOT_FOUND = "not_found"


def fill_case_date_iso(record: CaseRecord) -> CaseRecord:
    """Derive ``caseDateISO`` from ``caseDate`` (or now) when it is missing."""

    if record.case_date_iso:
        return record
    stamp: datetime | None = None
    if record.case_date:
        try:
            stamp = datetime.fromisoformat(record.case_date.strip().replace("Z", "+00:00"))
        except ValueError:
            log.debug("caseDate %r of %s is not ISO formatted", record.case_date, record.case_id)
    if stamp is None:
        stamp = datetime.now(timezone.utc)
    elif stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=timezone.utc)
    return record.model_copy(update={"case_date_iso": stamp.isoformat()})


def parse_records(items: Any, category: CaseCategory) -> list[CaseRecord]:
    """Validate a JSON array of case documents; records take ``category``.

    Raises:
        ParseError: ``items`` is not a list or an entry is not a valid record.
    """
    if not isinstance(items, list):
        raise ParseError(f"{category.storage_key} must be a list, not {type(items).__name__}")
    records = []
    for position, item in enumerate(items):
        try:
            record = CaseRecord.model_validate(item)
        except pydantic.ValidationError as exc:
            raise ParseError(f"{category.storage_key}[{position}] is not a valid case: {exc}") from exc
        records.append(record.model_copy(update={"category": category}))
    return records


def _category_or_all(value: str | CaseCategory) -> list[CaseCategory]:
    if value == ALL:
        return list(CaseCategory)
    try:
        return [CaseCategory.parse(value)]
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


class CaseRepository:
    """In-memory case collection persisted category-by-category through the adapter.

    One instance is created per open store and handed to every collaborator;
    nothing here is module-level state.  Mutations update memory first and are
    rolled back when the backing write fails, so memory never runs ahead of
    storage.
    """

    def __init__(
        self,
        adapter: StorageAdapter,
        attachments: AttachmentStore,
        *,
        pre_save_hooks: Sequence[PreSaveHook] | None = None,
        post_save_hooks: Sequence[PostSaveHook] | None = None,
    ):
        self.adapter = adapter
        self.attachments = attachments
        self.pre_save_hooks: tuple[PreSaveHook, ...] = (
            tuple(pre_save_hooks) if pre_save_hooks is not None else (fill_case_date_iso,)
        )
        self.post_save_hooks: tuple[PostSaveHook, ...] = tuple(post_save_hooks or ())
        self._cases: dict[CaseCategory, list[CaseRecord]] = {c: [] for c in CaseCategory}
        self._counter = 1
        self.settings = Settings()

    @property
    def counter(self) -> int:
        return self._counter

    # ------------------------------------------------------------------
    # Loading / persistence

    async def load(self) -> None:
        """Read categories, counter and settings from storage."""

        cases: dict[CaseCategory, list[CaseRecord]] = {}
        for category in CaseCategory:
            raw = await self.adapter.get(category.storage_key)
            if raw is None:
                cases[category] = []
                continue
            try:
                items = json.loads(raw)
            except ValueError as exc:
                raise ParseError(f"{category.storage_key} is not valid JSON: {exc}") from exc
            cases[category] = parse_records(items, category)

        counter = 1
        raw_counter = await self.adapter.get(COUNTER_KEY)
        if raw_counter is not None:
            try:
                counter = int(raw_counter)
            except ValueError as exc:
                raise ParseError(f"{COUNTER_KEY} is not an integer: {raw_counter!r}") from exc

        settings = Settings()
        raw_settings = await self.adapter.get(SETTINGS_KEY)
        if raw_settings is not None:
            try:
                settings = Settings.model_validate_json(raw_settings)
            except pydantic.ValidationError as exc:
                raise ParseError(f"{SETTINGS_KEY} is not a valid settings document") from exc

        self._cases, self._counter, self.settings = cases, counter, settings
        log.info(
            "Loaded %d case(s), counter=%d",
            sum(len(v) for v in cases.values()),
            counter,
        )

    def _encode_category(self, category: CaseCategory) -> str:
        return json.dumps(
            [record.to_document() for record in self._cases[category]], ensure_ascii=False
        )

    def _state_entries(self) -> dict[str, str]:
        entries = {c.storage_key: self._encode_category(c) for c in CaseCategory}
        entries[COUNTER_KEY] = str(self._counter)
        entries[SETTINGS_KEY] = json.dumps(self.settings.to_document(), ensure_ascii=False)
        return entries

    async def persist_all(self) -> None:
        """Write every category, the counter and settings in one pass."""

        await self.adapter.put_many(self._state_entries())

    def state(self) -> dict[CaseCategory, list[CaseRecord]]:
        """Return a copy of the category arrays in storage order."""

        return {c: list(records) for c, records in self._cases.items()}

    async def replace_state(
        self,
        cases: Mapping[CaseCategory, Sequence[CaseRecord]],
        counter: int,
        settings: Settings | None = None,
    ) -> None:
        """Swap the whole repository state and persist it in one write.

        Categories missing from ``cases`` become empty.  On a failed write the
        previous in-memory state is put back before the error propagates.
        """
        previous = (self._cases, self._counter, self.settings)
        self._cases = {c: list(cases.get(c, ())) for c in CaseCategory}
        self._counter = counter
        if settings is not None:
            self.settings = settings
        try:
            await self.persist_all()
        except StorageError:
            self._cases, self._counter, self.settings = previous
            raise

    async def save_settings(self, settings: Settings | Mapping[str, Any]) -> Settings:
        if not isinstance(settings, Settings):
            try:
                settings = Settings.model_validate(settings)
            except pydantic.ValidationError as exc:
                raise ValidationError(f"Invalid settings: {exc}") from exc
        await self.adapter.put(SETTINGS_KEY, json.dumps(settings.to_document(), ensure_ascii=False))
        self.settings = settings
        return settings

    # ------------------------------------------------------------------
    # CRUD

    def _coerce(self, record: CaseRecord | Mapping[str, Any]) -> CaseRecord:
        if isinstance(record, CaseRecord):
            return record
        try:
            return CaseRecord.model_validate(record)
        except pydantic.ValidationError as exc:
            raise ValidationError(f"Invalid case record: {exc}") from exc

    @staticmethod
    def _index_of(records: Sequence[CaseRecord], case_id: str) -> int | None:
        for index, existing in enumerate(records):
            if existing.case_id == case_id:
                return index
        return None

    async def save(self, record: CaseRecord | Mapping[str, Any]) -> SaveOutcome:
        """Insert or update ``record`` within its category.

        An existing record with the same id is replaced in place; a new one is
        appended and the counter advances.

        Raises:
            ValidationError: The record is invalid or has no category.
        """
        record = self._coerce(record)
        for hook in self.pre_save_hooks:
            record = hook(record)
        if record.category is None:
            raise ValidationError(f"Case {record.case_id} has no category")

        category = record.category
        records = self._cases[category]
        index = self._index_of(records, record.case_id)
        entries: dict[str, str]
        if index is not None:
            previous = records[index]
            records[index] = record
            outcome = SaveOutcome.UPDATED
            entries = {category.storage_key: self._encode_category(category)}
        else:
            records.append(record)
            self._counter += 1
            outcome = SaveOutcome.INSERTED
            entries = {
                category.storage_key: self._encode_category(category),
                COUNTER_KEY: str(self._counter),
            }

        try:
            await self.adapter.put_many(entries)
        except StorageError:
            if index is not None:
                records[index] = previous
            else:
                records.pop()
                self._counter -= 1
            raise

        log.debug("Saved case %s in %s (%s)", record.case_id, category.slug, outcome.value)
        for post_hook in self.post_save_hooks:
            post_hook(record, outcome)
        return outcome

    def list(self, category: str | CaseCategory = ALL) -> list[CaseRecord]:
        """Records newest first; equal dates keep insertion order."""

        records: list[CaseRecord] = []
        for cat in _category_or_all(category):
            records.extend(self._cases[cat])
        return sorted(records, key=record_timestamp, reverse=True)

    def get(self, case_id: str, category: str | CaseCategory | None = None) -> CaseRecord:
        for cat in _category_or_all(category if category is not None else ALL):
            index = self._index_of(self._cases[cat], case_id)
            if index is not None:
                return self._cases[cat][index]
        raise NotFoundError("case", case_id)

    async def delete(self, case_id: str, category: str | CaseCategory) -> DeleteOutcome:
        """Remove a case and cascade to its attachment blobs.

        A missing id is not an error.  Blob deletion failures are logged by the
        attachment store and do not undo the record removal.
        """
        categories = _category_or_all(category)
        for cat in categories:
            records = self._cases[cat]
            index = self._index_of(records, case_id)
            if index is not None:
                break
        else:
            log.info(
                "Delete of unknown case %s in %s ignored",
                case_id,
                ", ".join(c.slug for c in categories),
            )
            return DeleteOutcome.NOT_FOUND

        record = records.pop(index)
        try:
            await self.adapter.put(cat.storage_key, self._encode_category(cat))
        except StorageError:
            records.insert(index, record)
            raise

        await self.attachments.delete_attachments_for_case(case_id, record.attachments)
        log.info("Deleted case %s from %s", case_id, cat.slug)
        return DeleteOutcome.DELETED

    async def reset(self) -> int:
        """Drop every case, restart the counter at 1 and restore default settings.

        Attachment blobs of every case, including cases only known from a
        leftover side index, are deleted after the empty state is persisted.
        Backup snapshots are kept.  Returns the number of cases removed.
        """
        owned: dict[str, list[AttachmentMetadata]] = {}
        removed = 0
        for records in self._cases.values():
            for record in records:
                owned.setdefault(record.case_id, []).extend(record.attachments)
                removed += 1
        for key in await self.adapter.list_keys(INDEX_KEY_PREFIX):
            owned.setdefault(key[len(INDEX_KEY_PREFIX) :], [])

        await self.replace_state({}, 1, Settings())
        for case_id, attachments in owned.items():
            await self.attachments.delete_attachments_for_case(case_id, attachments)

        log.info("Reset store: removed %d case(s)", removed)
        return removed

    # ------------------------------------------------------------------
    # Queries

    def find_by_field(
        self, category: str | CaseCategory, predicate: Callable[[CaseRecord], bool]
    ) -> list[CaseRecord]:
        return [record for record in self.list(category) if predicate(record)]

    def search(
        self, query: str, field: str = ALL, category: str | CaseCategory = ALL
    ) -> list[CaseRecord]:
        """Case-insensitive substring search over one field or every scalar field."""

        needle = query.strip().lower()
        if not needle:
            return self.list(category)

        def matches(record: CaseRecord) -> bool:
            values = record.scalar_fields()
            if field != ALL:
                candidates: Iterable[Any] = [values.get(field)]
            else:
                candidates = values.values()
            return any(v is not None and needle in str(v).lower() for v in candidates)

        return self.find_by_field(category, matches)

    def counts(self) -> dict[CaseCategory, int]:
        return {c: len(records) for c, records in self._cases.items()}

    def next_case_id(self, today: date | None = None) -> str:
        return format_case_id(
            self.settings.case_id_format,
            self._counter,
            today=today,
            custom_template=self.settings.custom_case_id_format,
        )
