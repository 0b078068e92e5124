"""Periodic autosave of the form draft through :meth:`CaseRepository.save`.

The timer and a manual save may both be in flight for the same case; the
later completion wins.  Stopping only prevents future firings: a save that is
already running is awaited, never cancelled.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from typing import Any

from casekeeper.core.models import CaseRecord
from casekeeper.services.repository import CaseRepository, SaveOutcome
from casekeeper.storage.errors import StorageError, ValidationError

log = logging.getLogger(__name__)

__all__ = ["AutosaveTimer"]

DraftProvider = Callable[[], CaseRecord | Mapping[str, Any] | None]


class AutosaveTimer:
    def __init__(
        self,
        repository: CaseRepository,
        draft_provider: DraftProvider,
        interval: float | None = None,
    ):
        self.repository = repository
        self.draft_provider = draft_provider
        self._interval = interval
        self._stop = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.saves = 0

    @property
    def interval(self) -> float:
        if self._interval is not None:
            return self._interval
        return float(self.repository.settings.auto_save_interval)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        """Schedule firings on the running loop; no-op when autosave is disabled."""

        if self.running:
            return True
        if not self.repository.settings.autosave_enabled:
            log.info("Autosave disabled in settings; timer not started")
            return False
        self._stop = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(self._run(), name="autosave")
        log.debug("Autosave every %.1fs", self.interval)
        return True

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stop.set()
        task, self._task = self._task, None
        await task

    async def restart(self, interval: float | None = None) -> bool:
        await self.stop()
        if interval is not None:
            self._interval = interval
        return self.start()

    async def _run(self) -> None:
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                await self.fire()

    async def fire(self) -> SaveOutcome | None:
        """Save the current draft once; invalid drafts and storage failures are logged."""

        draft = self.draft_provider()
        if draft is None:
            return None
        try:
            outcome = await self.repository.save(draft)
        except ValidationError as exc:
            log.debug("Autosave skipped invalid draft: %s", exc)
            return None
        except StorageError as exc:
            log.warning("Autosave failed: %s", exc)
            return None
        self.saves += 1
        return outcome
