"""Replace or merge the repository from an externally supplied JSON document."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from casekeeper.core.models import CaseCategory, CaseRecord
from casekeeper.services.repository import COUNTER_KEY, CaseRepository, parse_records
from casekeeper.storage.errors import ParseError

log = logging.getLogger(__name__)

__all__ = ["ImportMergeEngine", "ImportStrategy", "ImportReport", "dedupe_first_seen"]


class ImportStrategy(str, Enum):
    REPLACE = "replace"
    MERGE = "merge"


@dataclass
class ImportReport:
    strategy: ImportStrategy
    imported: dict[CaseCategory, int] = field(default_factory=dict)
    duplicates_dropped: dict[CaseCategory, int] = field(default_factory=dict)
    counter_before: int = 0
    counter_after: int = 0

    @property
    def total_imported(self) -> int:
        return sum(self.imported.values())


def dedupe_first_seen(records: list[CaseRecord]) -> list[CaseRecord]:
    """Keep the first record for each case id, preserving order."""

    seen: set[str] = set()
    unique = []
    for record in records:
        if record.case_id in seen:
            continue
        seen.add(record.case_id)
        unique.append(record)
    return unique


def _category_for_key(key: str) -> CaseCategory | None:
    try:
        return CaseCategory.parse(key)
    except ValueError:
        return None


def parse_import_document(
    payload: str | bytes | Mapping[str, Any],
) -> tuple[dict[CaseCategory, list[CaseRecord]], int | None]:
    """Decode and validate an import document without touching any state.

    Category arrays may be keyed by the category tag, its ASCII slug or its
    storage key.  ``caseCounter`` is optional.

    Raises:
        ParseError: The payload is not JSON, not an object, has no category
            array, or contains an invalid record or counter.
    """
    if isinstance(payload, Mapping):
        document: Any = payload
    else:
        try:
            document = json.loads(payload)
        except (ValueError, UnicodeDecodeError) as exc:
            raise ParseError(f"Import document is not valid JSON: {exc}") from exc
    if not isinstance(document, dict):
        raise ParseError("Import document must be a JSON object")

    provided: dict[CaseCategory, list[CaseRecord]] = {}
    for key, value in document.items():
        category = _category_for_key(key)
        if category is None:
            continue
        if category in provided:
            raise ParseError(f"Category {category.value} appears more than once")
        provided[category] = parse_records(value, category)

    if not provided:
        raise ParseError("Import document contains no case categories")

    counter = document.get(COUNTER_KEY)
    if counter is not None:
        if isinstance(counter, bool):
            raise ParseError(f"{COUNTER_KEY} must be an integer")
        try:
            counter = int(counter)
        except (TypeError, ValueError) as exc:
            raise ParseError(f"{COUNTER_KEY} must be an integer, got {counter!r}") from exc
        if counter < 0:
            raise ParseError(f"{COUNTER_KEY} must not be negative")
    return provided, counter


class ImportMergeEngine:
    """Apply import documents to a repository with first-seen-wins dedup."""

    def __init__(self, repository: CaseRepository):
        self.repository = repository

    async def import_document(
        self,
        payload: str | bytes | Mapping[str, Any],
        strategy: ImportStrategy | str = ImportStrategy.MERGE,
    ) -> ImportReport:
        """Validate ``payload`` fully, then write the new state in one pass.

        Any decoding or validation failure raises :class:`ParseError` before the
        repository is touched.
        """
        try:
            strategy = ImportStrategy(strategy)
        except ValueError as exc:
            raise ParseError(f"Unknown import strategy: {strategy!r}") from exc
        provided, imported_counter = parse_import_document(payload)

        repo = self.repository
        current = repo.state()
        counter = repo.counter
        report = ImportReport(strategy=strategy, counter_before=counter)

        merged: dict[CaseCategory, list[CaseRecord]] = {}
        for category in CaseCategory:
            incoming = provided.get(category)
            if incoming is None:
                combined = current[category]
            elif strategy is ImportStrategy.REPLACE:
                combined = incoming
            else:
                combined = current[category] + incoming
            unique = dedupe_first_seen(combined)
            merged[category] = unique
            report.imported[category] = len(incoming or ())
            report.duplicates_dropped[category] = len(combined) - len(unique)

        # Replace takes the provided counter as-is; merge only ever raises it.
        if imported_counter is not None:
            if strategy is ImportStrategy.REPLACE or imported_counter > counter:
                counter = imported_counter
        report.counter_after = counter

        await repo.replace_state(merged, counter)
        log.info(
            "Imported %d case(s) with %s strategy; dropped %d duplicate(s)",
            report.total_imported,
            strategy.value,
            sum(report.duplicates_dropped.values()),
        )
        return report
