"""Single-timer poll scheduling across all tracked events."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone

from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.date import DateTrigger

from matchday.config import ResolutionConfig
from matchday.settlement.predictor import CompletionPredictor
from matchday.storage import EventStore

logger = logging.getLogger(__name__)

POLL_JOB_ID = "resolution-poll"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PollScheduler:
    """Owns the one outstanding poll timer.

    The next wake is the earliest recheck point over every event still
    awaiting a result, or a backlog retry while committed results have not
    reached the ledger. With no APScheduler attached the computed wake is
    only recorded, which is how the engine is driven in tests.
    """

    def __init__(
        self,
        store: EventStore,
        predictor: CompletionPredictor,
        config: ResolutionConfig,
        cycle: Callable[[], Awaitable[object]],
        scheduler: BaseScheduler | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.predictor = predictor
        self.config = config
        self._cycle = cycle
        self.scheduler = scheduler
        self._clock = clock
        self.next_wake: datetime | None = None
        self.last_poll_at: datetime | None = None

    def attach(self, scheduler: BaseScheduler) -> None:
        self.scheduler = scheduler

    @property
    def is_idle(self) -> bool:
        return self.next_wake is None

    async def compute_next_wake(self, now: datetime | None = None) -> datetime | None:
        """Earliest wake over all eligible events. Pure read of the store."""
        now = now or self._clock()
        eligible = await self.store.list_eligible_for_polling()
        if not eligible:
            return None

        wakes: list[datetime] = []
        has_backlog = False
        for event in eligible:
            if event.result_committed:
                if event.settlement_error is None:
                    has_backlog = True
                continue
            wake = self.predictor.next_recheck(event.kickoff_time, now, self.last_poll_at)
            if wake is not None:
                wakes.append(wake)

        if has_backlog:
            wakes.append(now + timedelta(minutes=self.config.backlog_retry_minutes))

        return min(wakes) if wakes else None

    async def recompute_next_wake(self) -> datetime | None:
        """Re-arm the poll timer, or go idle when nothing is left to poll."""
        wake = await self.compute_next_wake()
        if wake is None:
            if self.next_wake is not None:
                logger.info("No events left in predictive scope, poll timer idle")
            self._cancel_timer()
            return None

        if wake == self.next_wake and self._timer_armed():
            return wake

        self._arm_timer(wake)
        logger.info(f"Next resolution poll at {wake.isoformat()}")
        return wake

    async def on_wake(self) -> object:
        """Timer callback: run one poll cycle, then schedule the next."""
        started = self._clock()
        self.next_wake = None
        try:
            return await self._cycle()
        except Exception as e:
            logger.error(f"Poll cycle failed: {e}", exc_info=True)
            return None
        finally:
            self.last_poll_at = started
            await self.recompute_next_wake()

    def _timer_armed(self) -> bool:
        if self.scheduler is None:
            return self.next_wake is not None
        return self.scheduler.get_job(POLL_JOB_ID) is not None

    def _arm_timer(self, wake: datetime) -> None:
        self.next_wake = wake
        if self.scheduler is None:
            return
        self.scheduler.add_job(
            self.on_wake,
            DateTrigger(run_date=wake),
            id=POLL_JOB_ID,
            name="Resolution: Poll Cycle",
            replace_existing=True,
            misfire_grace_time=None,
            coalesce=True,
        )

    def _cancel_timer(self) -> None:
        self.next_wake = None
        if self.scheduler is not None and self.scheduler.get_job(POLL_JOB_ID):
            self.scheduler.remove_job(POLL_JOB_ID)
