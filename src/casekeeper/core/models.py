# CaseKeeper
# Copyright © 2025 The CaseKeeper Authors
# Licensed under CC BY-NC-SA 4.0 International
# http://creativecommons.org/licenses/by-nc-sa/4.0/

"""Pydantic schemas for case records, attachment metadata, settings and backups.

Field aliases keep the historical camelCase JSON shape (``caseId``,
``caseCode``, ``documentsMetadata`` ...) for everything that is persisted or
exported, while Python code uses snake_case attribute names.
"""

from __future__ import annotations

import mimetypes
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

__all__ = [
    "CaseCategory",
    "AttachmentMetadata",
    "AttachmentUpload",
    "CaseRecord",
    "Settings",
    "BackupDocument",
    "record_timestamp",
]

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class CaseCategory(str, Enum):
    """The three fixed case classifications that partition storage."""

    SAYED = "سيد"
    AMM = "عام"
    MASAREEF = "مصاريف"

    @property
    def storage_key(self) -> str:
        return _STORAGE_KEYS[self]

    @property
    def slug(self) -> str:
        return self.storage_key.removesuffix("Cases")

    @classmethod
    def parse(cls, value: str | CaseCategory) -> CaseCategory:
        """Accept the category tag itself or its ASCII slug (``sayed``, ``amm``, ``masareef``)."""

        if isinstance(value, CaseCategory):
            return value
        text = str(value).strip()
        for member in cls:
            if text in (member.value, member.slug, member.storage_key, member.name.lower()):
                return member
        raise ValueError(f"Unknown case category: {value!r}")


_STORAGE_KEYS = {
    CaseCategory.SAYED: "sayedCases",
    CaseCategory.AMM: "ammCases",
    CaseCategory.MASAREEF: "masareefCases",
}


class AttachmentMetadata(BaseModel):
    """Lightweight descriptor of a stored attachment; never holds the payload."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str = Field(min_length=1)
    name: str
    size: int = Field(ge=0)
    mime: str = Field(default="application/octet-stream", alias="type")
    category: str = "other"
    kind: str = "other"
    date: str = ""
    data_key: str = Field(alias="dataKey", min_length=1)

    @field_validator("data_key", mode="before")
    @classmethod
    def _no_inline_payload(cls, value: Any) -> Any:
        if isinstance(value, str) and value.startswith("data:"):
            raise ValueError("dataKey must reference a stored blob, not embed one")
        return value


@dataclass(frozen=True)
class AttachmentUpload:
    """A file handed to the attachment store by the form layer."""

    name: str
    data: bytes
    mime: str = "application/octet-stream"
    category: str = "other"

    @property
    def size(self) -> int:
        return len(self.data)

    @classmethod
    def from_path(cls, path: str | Path, *, category: str = "other") -> AttachmentUpload:
        path = Path(path)
        mime, _ = mimetypes.guess_type(path.name)
        return cls(
            name=path.name,
            data=path.read_bytes(),
            mime=mime or "application/octet-stream",
            category=category,
        )


class CaseRecord(BaseModel):
    """One welfare-case intake entry.

    Named fields cover what the storage layer and search rely on; every other
    form field is kept as a pydantic extra and round-trips untouched.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    case_id: str = Field(alias="caseId", min_length=1)
    category: CaseCategory | None = Field(default=None, alias="caseCode")
    case_date: str | None = Field(default=None, alias="caseDate")
    case_date_iso: str | None = Field(default=None, alias="caseDateISO")
    full_name: str | None = Field(default=None, alias="fullName")
    case_type: str | None = Field(default=None, alias="caseType")
    amount_numeric: float | None = Field(default=None, alias="amountNumeric")
    attachments: list[AttachmentMetadata] = Field(default_factory=list, alias="documentsMetadata")

    @field_validator("case_id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("category", mode="before")
    @classmethod
    def _coerce_category(cls, value: Any) -> Any:
        if value in (None, ""):
            return None
        return CaseCategory.parse(value)

    @field_validator("amount_numeric", mode="before")
    @classmethod
    def _coerce_amount(cls, value: Any) -> Any:
        if isinstance(value, str):
            cleaned = value.replace(",", "").replace("٬", "").strip()
            return cleaned or None
        return value

    def to_document(self) -> dict[str, Any]:
        """Return the JSON-ready, alias-keyed form used on disk and in exports."""

        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def scalar_fields(self) -> dict[str, Any]:
        """Return every non-attachment field as ``alias -> value``."""

        doc = self.to_document()
        doc.pop("documentsMetadata", None)
        return {k: v for k, v in doc.items() if not isinstance(v, (dict, list))}


def record_timestamp(record: CaseRecord) -> datetime:
    """Return the record date used for newest-first ordering."""

    for raw in (record.case_date_iso, record.case_date):
        if not raw:
            continue
        try:
            parsed = datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
        except ValueError:
            continue
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return _EPOCH


class Settings(BaseModel):
    """Host application settings; only id format, autosave and backup fields are read here."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    org_name: str = Field(default="", alias="orgName")
    auto_save: str = Field(default="enabled", alias="autoSave")
    auto_save_interval: int = Field(default=60, ge=1, alias="autoSaveInterval")
    case_id_format: str = Field(default="YYMMDD-NUM", alias="caseIdFormat")
    custom_case_id_format: str = Field(default="", alias="customCaseIdFormat")
    backup_frequency: str = Field(default="daily", alias="backupFrequency")
    backup_count: int = Field(default=5, ge=1, alias="backupCount")

    @property
    def autosave_enabled(self) -> bool:
        return self.auto_save == "enabled"

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class BackupDocument(BaseModel):
    """Serialized form of a snapshot: all cases, the counter, settings and a timestamp."""

    model_config = ConfigDict(populate_by_name=True)

    cases: dict[CaseCategory, list[CaseRecord]] = Field(default_factory=dict)
    case_counter: int = Field(default=1, ge=0, alias="caseCounter")
    date: str
    settings: Settings | None = None

    def record_count(self) -> int:
        return sum(len(records) for records in self.cases.values())

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
