"""Case, attachment, backup and import services built on the storage adapter."""

from importlib import import_module
from typing import Any

__all__ = [
    "AttachmentStore",
    "CaseRepository",
    "BackupManager",
    "ImportMergeEngine",
    "AutosaveTimer",
]

_LAZY_EXPORTS: dict[str, tuple[str, str]] = {
    "AttachmentStore": ("casekeeper.services.attachments", "AttachmentStore"),
    "CaseRepository": ("casekeeper.services.repository", "CaseRepository"),
    "BackupManager": ("casekeeper.services.backup", "BackupManager"),
    "ImportMergeEngine": ("casekeeper.services.import_merge", "ImportMergeEngine"),
    "AutosaveTimer": ("casekeeper.services.autosave", "AutosaveTimer"),
}


def __getattr__(name: str) -> Any:
    if name in _LAZY_EXPORTS:
        module_name, attr = _LAZY_EXPORTS[name]
        value = getattr(import_module(module_name), attr)
        globals()[name] = value
        return value
    raise AttributeError(f"module 'casekeeper.services' has no attribute {name!r}")
