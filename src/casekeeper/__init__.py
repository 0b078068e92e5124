# CaseKeeper
# Copyright © 2025 The CaseKeeper Authors
# Licensed under CC BY-NC-SA 4.0 International
# http://creativecommons.org/licenses/by-nc-sa/4.0/

"""Public package interface for the CaseKeeper record and attachment store."""

from importlib import import_module

__version__ = "1.0.0"

_LAZY_EXPORTS: dict[str, tuple[str, str]] = {
    "StoreConfig": ("casekeeper.config", "StoreConfig"),
    "CaseStoreContext": ("casekeeper.core.store_context", "CaseStoreContext"),
    "open_case_store": ("casekeeper.core.store_context", "open_case_store"),
    "CaseCategory": ("casekeeper.core.models", "CaseCategory"),
    "CaseRecord": ("casekeeper.core.models", "CaseRecord"),
    "AttachmentMetadata": ("casekeeper.core.models", "AttachmentMetadata"),
    "AttachmentUpload": ("casekeeper.core.models", "AttachmentUpload"),
    "Settings": ("casekeeper.core.models", "Settings"),
    "StorageAdapter": ("casekeeper.storage.adapter", "StorageAdapter"),
}

__all__ = ["__version__", *_LAZY_EXPORTS]


def __getattr__(name: str):
    try:
        module_name, attr = _LAZY_EXPORTS[name]
    except KeyError:
        raise AttributeError(f"module 'casekeeper' has no attribute {name!r}") from None
    value = getattr(import_module(module_name), attr)
    globals()[name] = value
    return value
