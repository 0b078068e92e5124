"""
Secondary backend: a larger-capacity, asynchronous SQLite blob store.

Every statement runs on the :class:`~casekeeper.storage.db_writer.DbWriter`
thread; the public coroutines only await the bridged futures.  Payloads are
zlib-compressed and split into fixed-size chunks, mirroring how large binary
assets are kept out of the rows that describe them.

Schema:
    entry(key, kind, size_bytes, stored_bytes, sha256, updated_utc)
    entry_chunk(key, seq, data)        # ON DELETE CASCADE from entry
    meta(key, value)                   # schema_version
"""

from __future__ import annotations

import hashlib
import logging
import sqlite3
import zlib
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from pathlib import Path
from typing import NamedTuple, TypeVar

from .db_writer import DbWriter, WriterClosed
from .errors import BackendUnavailableError, QuotaExceededError, StorageError
from .sqlite_utils import integrity_ok, optimize, transaction

log = logging.getLogger(__name__)

__all__ = [
    "BlobStore",
    "FILE_NAME",
    "DEFAULT_MAX_BYTES",
    "DEFAULT_CHUNK_SIZE",
    "SCHEMA_VERSION",
]

FILE_NAME = "blob_store.sqlite"
SCHEMA_VERSION = 1
DEFAULT_MAX_BYTES = 512 * 1024 * 1024  # 512 MiB
DEFAULT_CHUNK_SIZE = 512 * 1024  # 512 KiB

T = TypeVar("T")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS entry (
    key TEXT PRIMARY KEY,
    kind TEXT NOT NULL CHECK (kind IN ('text', 'bytes')),
    size_bytes INTEGER NOT NULL,
    stored_bytes INTEGER NOT NULL,
    sha256 TEXT NOT NULL,
    updated_utc TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS entry_chunk (
    key TEXT NOT NULL REFERENCES entry(key) ON DELETE CASCADE,
    seq INTEGER NOT NULL,
    data BLOB NOT NULL,
    PRIMARY KEY (key, seq)
) WITHOUT ROWID;
"""


class PreparedPayload(NamedTuple):
    """Compressed payload ready to be written as chunks."""

    kind: str
    size_bytes: int
    sha256: str
    compressed: bytes


def _prepare(value: str | bytes, *, level: int = 6) -> PreparedPayload:
    if isinstance(value, str):
        kind, raw = "text", value.encode("utf-8")
    elif isinstance(value, (bytes, bytearray, memoryview)):
        kind, raw = "bytes", bytes(value)
    else:
        raise TypeError(f"Blob store values must be str or bytes, not {type(value).__name__}")
    return PreparedPayload(
        kind=kind,
        size_bytes=len(raw),
        sha256=hashlib.sha256(raw).hexdigest(),
        compressed=zlib.compress(raw, level),
    )


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _ensure_schema(conn: sqlite3.Connection) -> None:
    conn.execute("PRAGMA foreign_keys = ON")
    conn.executescript(_SCHEMA)
    row = conn.execute("SELECT value FROM meta WHERE key = 'schema_version'").fetchone()
    if row is None:
        conn.execute(
            "INSERT INTO meta(key, value) VALUES ('schema_version', ?)", (str(SCHEMA_VERSION),)
        )
    elif int(row[0]) > SCHEMA_VERSION:
        raise BackendUnavailableError(
            f"Blob store schema {row[0]} is newer than supported version {SCHEMA_VERSION}"
        )
    conn.commit()


def _stored_total(conn: sqlite3.Connection) -> int:
    row = conn.execute("SELECT COALESCE(SUM(stored_bytes), 0) FROM entry").fetchone()
    return int(row[0])


def _write_entry(
    conn: sqlite3.Connection, key: str, prepared: PreparedPayload, *, chunk_size: int
) -> None:
    conn.execute(
        """
        INSERT INTO entry(key, kind, size_bytes, stored_bytes, sha256, updated_utc)
        VALUES (?, ?, ?, ?, ?, ?)
        ON CONFLICT(key) DO UPDATE SET
            kind = excluded.kind,
            size_bytes = excluded.size_bytes,
            stored_bytes = excluded.stored_bytes,
            sha256 = excluded.sha256,
            updated_utc = excluded.updated_utc
        """,
        (
            key,
            prepared.kind,
            prepared.size_bytes,
            len(prepared.compressed),
            prepared.sha256,
            _utc_now(),
        ),
    )
    conn.execute("DELETE FROM entry_chunk WHERE key = ?", (key,))
    data = prepared.compressed
    for seq, offset in enumerate(range(0, len(data), chunk_size)):
        conn.execute(
            "INSERT INTO entry_chunk(key, seq, data) VALUES (?, ?, ?)",
            (key, seq, sqlite3.Binary(data[offset : offset + chunk_size])),
        )


class BlobStore:
    """Asynchronous façade over the chunked SQLite entry tables."""

    backend_name = "secondary"

    def __init__(self, writer: DbWriter, *, max_bytes: int, chunk_size: int):
        self._writer = writer
        self.max_bytes = max_bytes
        self.chunk_size = chunk_size

    @property
    def path(self) -> Path:
        return self._writer.db_path

    @classmethod
    async def open(
        cls,
        path: str | Path,
        *,
        max_bytes: int = DEFAULT_MAX_BYTES,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> "BlobStore":
        """Open (creating if needed) the store at ``path``.

        Raises:
            BackendUnavailableError: If the database cannot be opened or migrated.
        """
        path = Path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            writer = DbWriter(path, pragmas={"foreign_keys": "ON"})
        except (OSError, sqlite3.Error) as exc:
            raise BackendUnavailableError(f"Cannot open blob store {path}: {exc}") from exc

        try:
            await writer.call(_ensure_schema)
        except BackendUnavailableError:
            writer.close()
            raise
        except (sqlite3.Error, WriterClosed) as exc:
            writer.close()
            raise BackendUnavailableError(f"Cannot initialize blob store {path}: {exc}") from exc

        log.info("Blob store ready at %s", path)
        return cls(writer, max_bytes=max_bytes, chunk_size=chunk_size)

    async def _run(self, func: Callable[[sqlite3.Connection], T]) -> T:
        try:
            return await self._writer.call(func)
        except (sqlite3.Error, WriterClosed) as exc:
            raise StorageError(f"Blob store operation failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Writes

    async def put(self, key: str, value: str | bytes) -> None:
        await self.put_many({key: value})

    async def put_many(self, entries: Mapping[str, str | bytes]) -> None:
        """Write all ``entries`` in one transaction, or none of them."""

        if not entries:
            return
        items = dict(entries)
        chunk_size = self.chunk_size
        max_bytes = self.max_bytes

        def _write(conn: sqlite3.Connection) -> None:
            prepared = {key: _prepare(value) for key, value in items.items()}
            with transaction(conn):
                placeholders = ",".join("?" for _ in prepared)
                row = conn.execute(
                    f"SELECT COALESCE(SUM(stored_bytes), 0) FROM entry WHERE key IN ({placeholders})",
                    tuple(prepared),
                ).fetchone()
                replaced = int(row[0])
                requested = sum(len(p.compressed) for p in prepared.values())
                available = max_bytes - _stored_total(conn) + replaced
                if requested > available:
                    raise QuotaExceededError(self.backend_name, requested, available)
                for key, payload in prepared.items():
                    _write_entry(conn, key, payload, chunk_size=chunk_size)

        await self._run(_write)

    async def delete(self, key: str) -> bool:
        """Delete ``key``; return True when it existed."""

        def _delete(conn: sqlite3.Connection) -> bool:
            with transaction(conn):
                cur = conn.execute("DELETE FROM entry WHERE key = ?", (key,))
                conn.execute("DELETE FROM entry_chunk WHERE key = ?", (key,))
            return cur.rowcount > 0

        return await self._run(_delete)

    # ------------------------------------------------------------------
    # Reads

    async def get(self, key: str) -> str | bytes | None:
        def _read(conn: sqlite3.Connection) -> tuple[str, bytes] | None:
            row = conn.execute("SELECT kind FROM entry WHERE key = ?", (key,)).fetchone()
            if row is None:
                return None
            chunks = conn.execute(
                "SELECT data FROM entry_chunk WHERE key = ? ORDER BY seq ASC", (key,)
            ).fetchall()
            return str(row[0]), b"".join(bytes(c[0]) for c in chunks)

        found = await self._run(_read)
        if found is None:
            return None
        kind, compressed = found
        try:
            raw = zlib.decompress(compressed)
        except zlib.error as exc:
            raise StorageError(f"Blob {key!r} is corrupted: {exc}") from exc
        return raw.decode("utf-8") if kind == "text" else raw

    async def keys(self, prefix: str = "") -> list[str]:
        def _keys(conn: sqlite3.Connection) -> list[str]:
            rows = conn.execute(
                "SELECT key FROM entry WHERE substr(key, 1, ?) = ? ORDER BY key",
                (len(prefix), prefix),
            ).fetchall()
            return [str(r[0]) for r in rows]

        return await self._run(_keys)

    async def used_bytes(self) -> int:
        return await self._run(_stored_total)

    async def verify(self) -> bool:
        """Return True when the database passes an integrity check."""

        return await self._run(integrity_ok)

    async def close(self) -> None:
        if self._writer.closed:
            return
        try:
            await self._run(optimize)
            await self._writer.drain()
        except StorageError:
            log.debug("Blob store optimize failed during close", exc_info=True)
        self._writer.close()
