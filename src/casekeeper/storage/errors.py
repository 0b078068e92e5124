"""Exception taxonomy shared by the storage layer and the services built on it."""

from __future__ import annotations

__all__ = [
    "CaseStoreError",
    "ValidationError",
    "NotFoundError",
    "ParseError",
    "StorageError",
    "BackendUnavailableError",
    "QuotaExceededError",
]


class CaseStoreError(Exception):
    """Base class for every error raised by CaseKeeper."""


class ValidationError(CaseStoreError):
    """Raised when a record or attachment fails validation before any write."""


class NotFoundError(CaseStoreError):
    """Raised when a case, attachment or snapshot does not exist."""

    def __init__(self, kind: str, key: str):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: {key}")


class ParseError(CaseStoreError):
    """Raised when a stored or imported document cannot be decoded."""


class StorageError(CaseStoreError):
    """Raised when a storage backend fails an operation."""


class BackendUnavailableError(StorageError):
    """Raised when the secondary backend cannot be initialized."""


class QuotaExceededError(StorageError):
    """Raised when a write would exceed a backend's capacity."""

    def __init__(self, backend: str, requested: int, available: int):
        self.backend = backend
        self.requested = requested
        self.available = available
        super().__init__(
            f"{backend} quota exceeded: write needs {requested}, {max(available, 0)} available"
        )
