"""Voiding of postponed events that will not be played as scheduled."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from matchday.config import CancellationConfig
from matchday.models import Event
from matchday.services.ledger import LedgerClient, LedgerError, LedgerStatus
from matchday.settlement.models import CancelledEvent, SweepResult
from matchday.storage import EventStore

logger = logging.getLogger(__name__)


def is_cancel_eligible(event: Event, now: datetime, grace_period: timedelta) -> bool:
    """Postponed from an earlier day, or postponed today for longer than the grace period."""
    if event.kickoff_time.date() < now.date():
        return True
    if event.postponed_at is None:
        return False
    return now - event.postponed_at >= grace_period


class StaleEventCanceller:
    """Fixed-interval sweep that cancels abandoned postponements on the ledger.

    The ledger is always re-checked first: an event it already reports as
    cancelled is only reconciled locally, and one it reports as resolved is
    never cancelled.
    """

    def __init__(
        self,
        store: EventStore,
        ledger: LedgerClient,
        config: CancellationConfig | None = None,
    ):
        self.store = store
        self.ledger = ledger
        self.config = config or CancellationConfig()

    @property
    def grace_period(self) -> timedelta:
        return timedelta(minutes=self.config.grace_period_minutes)

    async def sweep(self, now: datetime) -> SweepResult:
        result = SweepResult(started_at=now)
        candidates = [
            e
            for e in await self.store.list_stale_candidates()
            if is_cancel_eligible(e, now, self.grace_period)
        ]
        result.candidates = len(candidates)

        for event in candidates:
            try:
                ledger_event = await self.ledger.get_status(event.ledger_id)
            except LedgerError as e:
                logger.error(f"Could not read ledger status for event {event.id}: {e}")
                result.failed_ids.append(event.id)
                continue

            if ledger_event.status == LedgerStatus.CANCELLED:
                logger.info(f"Event {event.id} already cancelled on the ledger, reconciling")
                await self.store.mark_cancelled(event.id)
                result.reconciled_ids.append(event.id)
                continue

            if ledger_event.status == LedgerStatus.RESOLVED:
                logger.warning(
                    f"Event {event.id} ({event.label}) is resolved on the ledger, "
                    "not cancelling"
                )
                result.skipped_resolved_ids.append(event.id)
                continue

            try:
                tx_id = await self.ledger.cancel(event.ledger_id, self.config.reason)
            except LedgerError as e:
                logger.error(f"Failed to cancel event {event.id} on the ledger: {e}")
                result.failed_ids.append(event.id)
                continue

            await self.store.mark_cancelled(event.id)
            result.cancelled.append(CancelledEvent.from_event(event, tx_id))
            logger.info(f"Cancelled postponed event {event.id} ({event.label}), tx {tx_id}")

        return result
