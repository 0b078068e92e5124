"""Serialized SQLite worker backing the asynchronous blob store.

The writer owns a single ``sqlite3.Connection`` (``check_same_thread=False``)
and executes every submitted callable on a dedicated worker thread.  Callers
on the event loop await :meth:`DbWriter.call`, which bridges the worker's
``concurrent.futures.Future`` into asyncio.  This gives the blob store:

* exactly one transaction in flight at a time (single writer);
* suspension points only at the ``await`` on the bridged future;
* a :meth:`drain` barrier so shutdown never drops queued work.

Usage:
    writer = DbWriter(db_path)
    rows = await writer.call(lambda conn: conn.execute("SELECT 1").fetchall())
    await writer.drain()
    writer.close()
"""

from __future__ import annotations

import asyncio
import logging
import queue
import sqlite3
import threading
from concurrent.futures import Future
from pathlib import Path
from typing import Any, Callable, TypeVar

__all__ = ["DbWriter", "WriterClosed"]

log = logging.getLogger(__name__)

T = TypeVar("T")


class WriterClosed(RuntimeError):
    """Raised when a submission is attempted after the writer is closed."""


class DbWriter:
    """Single-writer queue for one SQLite connection."""

    def __init__(self, db_path: str | Path, *, pragmas: dict[str, Any] | None = None) -> None:
        self.db_path = Path(db_path)
        self._queue: "queue.Queue[tuple[Future, Callable[[sqlite3.Connection], Any]]]" = queue.Queue()
        self._stop = threading.Event()
        self._closed = False

        # Connect on the caller's thread so an unusable path fails fast.
        self.conn = sqlite3.connect(
            self.db_path.as_posix(), check_same_thread=False, isolation_level=None
        )
        self.conn.execute("PRAGMA journal_mode = WAL")
        self.conn.execute("PRAGMA synchronous = NORMAL")
        self.conn.execute("PRAGMA busy_timeout = 10000")
        for key, value in (pragmas or {}).items():
            try:
                self.conn.execute(f"PRAGMA {key}={value}")
            except sqlite3.DatabaseError:
                log.debug("Ignoring unsupported pragma %s", key)

        self._thread = threading.Thread(target=self._worker, name="DbWriter", daemon=True)
        self._thread.start()

    # ------------------------------------------------------------------ #
    # Public API                                                         #
    # ------------------------------------------------------------------ #
    @property
    def closed(self) -> bool:
        return self._closed

    def submit(self, func: Callable[[sqlite3.Connection], T]) -> "Future[T]":
        """Queue ``func`` for the worker thread and return its future."""

        future: Future = Future()
        if self._closed:
            future.set_exception(WriterClosed("Writer is closed"))
            return future
        self._queue.put((future, func))
        return future

    async def call(self, func: Callable[[sqlite3.Connection], T]) -> T:
        """Run ``func`` on the worker thread and await its result."""

        return await asyncio.wrap_future(self.submit(func))

    async def drain(self) -> None:
        """Wait until every previously queued callable has finished."""

        await self.call(lambda _conn: None)

    def close(self) -> None:
        """Stop the worker thread and close the connection."""

        if self._closed:
            return
        self._closed = True
        sentinel: Future = Future()
        sentinel.set_result(None)
        self._queue.put((sentinel, lambda _conn: None))
        self._stop.set()
        if self._thread.is_alive():
            self._thread.join(timeout=5)
        try:
            self.conn.close()
        except sqlite3.Error:
            log.debug("Error closing blob store connection", exc_info=True)

    # ------------------------------------------------------------------ #
    # Internal worker                                                    #
    # ------------------------------------------------------------------ #
    def _worker(self) -> None:
        while True:
            try:
                future, func = self._queue.get(timeout=0.1)
            except queue.Empty:
                if self._stop.is_set():
                    return
                continue

            if future.done():
                # Sentinel or cancelled submission.
                self._queue.task_done()
                if self._stop.is_set() and self._queue.empty():
                    return
                continue

            if not future.set_running_or_notify_cancel():
                self._queue.task_done()
                continue

            try:
                future.set_result(func(self.conn))
            except Exception as exc:
                future.set_exception(exc)
            finally:
                self._queue.task_done()

    def __enter__(self) -> "DbWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
