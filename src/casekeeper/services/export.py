# CaseKeeper
# Copyright © 2025 The CaseKeeper Authors
# Licensed under CC BY-NC-SA 4.0 International
# http://creativecommons.org/licenses/by-nc-sa/4.0/

"""
Export of case data as an import-compatible JSON document or a flat table.

The JSON document has the three category tags as top-level keys; exporting
``"all"`` adds ``caseCounter``.  Tables carry one row per case with the scalar
form fields as columns and an attachment count in place of the metadata.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import pandas as pd

from casekeeper.core.models import CaseCategory
from casekeeper.services.repository import ALL, COUNTER_KEY, CaseRepository

__all__ = ["export_document", "export_json", "export_table", "cases_dataframe", "TABLE_FORMATS"]

log = logging.getLogger(__name__)

TABLE_FORMATS = ("csv", "xlsx")
_LEAD_COLUMNS = ["caseId", "caseCode", "caseDate", "fullName", "caseType", "amountNumeric"]


def _scope_categories(scope: str | CaseCategory) -> list[CaseCategory]:
    if scope == ALL:
        return list(CaseCategory)
    return [CaseCategory.parse(scope)]


def export_document(repository: CaseRepository, scope: str | CaseCategory = ALL) -> dict[str, Any]:
    """Return the export document for ``scope`` (``"all"`` or one category)."""

    state = repository.state()
    document: dict[str, Any] = {
        category.value: [record.to_document() for record in state[category]]
        for category in _scope_categories(scope)
    }
    if scope == ALL:
        document[COUNTER_KEY] = repository.counter
    return document


def export_json(repository: CaseRepository, scope: str | CaseCategory = ALL) -> str:
    return json.dumps(export_document(repository, scope), ensure_ascii=False, indent=2)


def cases_dataframe(repository: CaseRepository, scope: str | CaseCategory = ALL) -> pd.DataFrame:
    """Flatten the cases of ``scope`` into a DataFrame, newest first."""

    rows = []
    for category in _scope_categories(scope):
        for record in repository.list(category):
            row = record.scalar_fields()
            row["caseCode"] = category.value
            row["attachmentCount"] = len(record.attachments)
            rows.append(row)

    frame = pd.DataFrame(rows)
    if frame.empty:
        return pd.DataFrame(columns=[*_LEAD_COLUMNS, "attachmentCount"])
    lead = [c for c in _LEAD_COLUMNS if c in frame.columns]
    rest = [c for c in frame.columns if c not in lead]
    return frame[lead + rest]


def export_table(
    repository: CaseRepository,
    path: str | Path,
    scope: str | CaseCategory = ALL,
    fmt: str = "csv",
) -> Path:
    """Write the cases of ``scope`` to ``path`` as CSV or Excel."""

    if fmt not in TABLE_FORMATS:
        raise ValueError(f"Unsupported table format {fmt!r}; expected one of {TABLE_FORMATS}")
    path = Path(path)
    frame = cases_dataframe(repository, scope)

    if fmt == "csv":
        # utf-8-sig so spreadsheet apps detect the Arabic text correctly
        frame.to_csv(path, index=False, encoding="utf-8-sig")
    else:
        with pd.ExcelWriter(path, engine="openpyxl") as writer:
            frame.to_excel(writer, index=False, sheet_name="Cases")
            sheet = writer.sheets["Cases"]
            sheet.sheet_view.rightToLeft = True
            sheet.freeze_panes = "A2"

    log.info("Exported %d case(s) to %s", len(frame), path)
    return path
