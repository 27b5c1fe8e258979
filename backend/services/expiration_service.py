"""Background sweep that finalizes confirmed reservations whose end has passed."""

from __future__ import annotations

import asyncio
import sqlite3
from datetime import datetime, timezone
from typing import Callable, Optional

from backend.repository.data_repository import DataRepository
from backend.utils.logger import get_logger


logger = get_logger(__name__)


class ExpirationSweepService:
    """One idempotent pass of ``confirmed -> finalized`` for ended reservations.

    A failed pass is logged and reported as zero transitions; the next tick
    retries from scratch, so no state is carried between runs.
    """

    def __init__(
        self,
        repository: DataRepository,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._repository = repository
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def run_once(self, now: datetime | None = None) -> int:
        reference = now or self._clock()
        try:
            with self._repository.transaction() as store:
                finalized = store.finalize_expired(reference)
        except sqlite3.OperationalError as exc:
            logger.warning("Expiration sweep skipped, database busy: %s", exc)
            return 0
        except sqlite3.Error:
            logger.exception("Expiration sweep failed")
            return 0

        if finalized:
            logger.info("Expiration sweep finalized %s reservation(s)", finalized)
        else:
            logger.debug("Expiration sweep found nothing to finalize")
        return finalized


class ExpirationScheduler:
    """Runs the sweep on the event loop's executor at a fixed interval."""

    def __init__(
        self,
        sweep_service: ExpirationSweepService,
        interval_seconds: float,
        initial_delay_seconds: float = 0.0,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self._sweep_service = sweep_service
        self._interval_seconds = interval_seconds
        self._initial_delay_seconds = max(0.0, initial_delay_seconds)
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name="expiration-sweep")
        logger.info(
            "Expiration scheduler started interval=%ss initial_delay=%ss",
            self._interval_seconds,
            self._initial_delay_seconds,
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Expiration scheduler stopped")

    async def _run(self) -> None:
        if self._initial_delay_seconds:
            await asyncio.sleep(self._initial_delay_seconds)
        while True:
            try:
                await asyncio.to_thread(self._sweep_service.run_once)
            except Exception:
                # Keep ticking; a single bad pass must not stop the schedule.
                logger.exception("Unexpected error in expiration sweep tick")
            await asyncio.sleep(self._interval_seconds)
