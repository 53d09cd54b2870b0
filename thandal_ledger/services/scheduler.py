"""Background scheduler that closes every lender's day once the cut-off time passes"""

import asyncio
import logging
from datetime import date, datetime, time
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from thandal_ledger.config import Settings
from thandal_ledger.domain.models import DayCloseResult
from thandal_ledger.infrastructure.database.repositories import LoanRepository
from thandal_ledger.infrastructure.observability.metrics import day_close_counter
from thandal_ledger.services.day_close import DayCloseService
from thandal_ledger.utils.clock import Clock

logger = logging.getLogger(__name__)


def parse_cutoff(value: str) -> time:
    """'HH:MM' -> time"""
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


class DayCloseScheduler:
    """
    Wakes up periodically and, once per calendar day after the cut-off,
    runs the day-close for each lender in its own transaction.

    Day-close is idempotent, so a restart that re-runs a sweep is harmless.
    A failing lender is rolled back and logged; the others still close, and
    the sweep stays due so the next poll retries it.
    """

    def __init__(self, settings: Settings, session_factory: Callable[[], Session], clock: Clock) -> None:
        self._settings = settings
        self._session_factory = session_factory
        self._clock = clock
        self._cutoff = parse_cutoff(settings.day_close_time)
        self._last_run: Optional[date] = None
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    def is_due(self, now: datetime) -> bool:
        return now.time() >= self._cutoff and self._last_run != now.date()

    async def start(self) -> None:
        """Start the loop in a background task if enabled"""
        if not self._settings.day_close_scheduler_enabled:
            logger.info("Day-close scheduler disabled by DAY_CLOSE_SCHEDULER_ENABLED=false")
            return
        if self._task and not self._task.done():
            logger.info("Day-close scheduler already running.")
            return

        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop(), name="day-close-scheduler")
        logger.info("Day-close scheduler started.", extra={"cutoff": self._settings.day_close_time})

    async def stop(self) -> None:
        """Gracefully stop the background task"""
        if not self._task:
            return
        self._stop_event.set()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            logger.info("Day-close scheduler task cancelled.")
        finally:
            self._task = None

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            if self.is_due(self._clock.now()):
                try:
                    await asyncio.to_thread(self.run_once)
                except Exception:
                    logger.exception("Unhandled error during scheduled day-close.")

            try:
                await asyncio.wait_for(
                    self._stop_event.wait(),
                    timeout=float(self._settings.day_close_poll_interval_seconds),
                )
            except asyncio.TimeoutError:
                continue

    def run_once(self) -> List[DayCloseResult]:
        """Close today for every lender that has something to close"""
        today = self._clock.today()
        db = self._session_factory()
        try:
            lenders = LoanRepository(db).get_lenders_to_close(today)
        finally:
            db.close()

        results = []
        failed = []
        for lender_id in lenders:
            db = self._session_factory()
            try:
                results.append(DayCloseService(db, self._clock).close_day(lender_id))
                db.commit()
            except Exception:
                db.rollback()
                failed.append(lender_id)
                day_close_counter.labels(outcome="failed").inc()
                logger.exception("Scheduled day-close failed", extra={"user_id": lender_id})
            finally:
                db.close()

        if failed:
            logger.warning(
                "Scheduled day-close incomplete, will retry",
                extra={"failed_lenders": failed, "business_date": today.isoformat()},
            )
            return results

        self._last_run = today
        logger.info("Scheduled day-close completed", extra={"lenders": len(lenders), "business_date": today.isoformat()})
        return results
