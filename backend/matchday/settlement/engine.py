"""Settlement engine: wires the store, the clients and the settlement steps together."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import datetime, timedelta

from apscheduler.schedulers.base import BaseScheduler

from matchday.config import Settings
from matchday.models import Event, EventStatus, Outcome
from matchday.services.football import FootballAPIError, FootballClient
from matchday.services.ledger import (
    LedgerClient,
    LedgerError,
    LedgerRejectedError,
    LedgerStatus,
)
from matchday.services.telegram import TelegramClient, TelegramError
from matchday.settlement.announcer import TelegramAnnouncer
from matchday.settlement.canceller import StaleEventCanceller
from matchday.settlement.dispatcher import BatchSettlementDispatcher
from matchday.settlement.models import (
    BettingClosed,
    CancelledBatch,
    IngestionResult,
    PollCycleResult,
    ResolvedEvent,
    SweepResult,
)
from matchday.settlement.notifier import SettlementNotifier
from matchday.settlement.poller import PollScheduler, utc_now
from matchday.settlement.predictor import CompletionPredictor
from matchday.settlement.resolver import ResolutionResolver
from matchday.storage import EventStore, create_db_engine

logger = logging.getLogger(__name__)


class SettlementEngine:
    """Single owner of every path that writes settlement state.

    Poll cycles, stale sweeps, betting-close checks and manual triggers all
    run under one lock, so at most one ledger submission is in flight.
    """

    def __init__(
        self,
        settings: Settings,
        store: EventStore,
        football: FootballClient,
        ledger: LedgerClient,
        notifier: SettlementNotifier | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.settings = settings
        self.store = store
        self.football = football
        self.ledger = ledger
        self.notifier = notifier or SettlementNotifier()
        self._clock = clock
        self._lock = asyncio.Lock()

        self.predictor = CompletionPredictor(settings.resolution)
        self.resolver = ResolutionResolver(store, football, settings.resolution)
        self.dispatcher = BatchSettlementDispatcher(
            store, ledger, settings.ledger.max_batch_size
        )
        self.canceller = StaleEventCanceller(store, ledger, settings.cancellation)
        self.poller = PollScheduler(
            store,
            self.predictor,
            settings.resolution,
            self._poll_cycle,
            clock=clock,
        )

    async def start(self, scheduler: BaseScheduler) -> datetime | None:
        """Hand the poll timer to APScheduler and arm it."""
        self.poller.attach(scheduler)
        return await self.poller.recompute_next_wake()

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def run_poll_cycle(self) -> PollCycleResult | None:
        """Poll now. Same path the timer takes, so the timer is re-armed after."""
        result = await self.poller.on_wake()
        if isinstance(result, PollCycleResult):
            result.next_wake = self.poller.next_wake
            return result
        return None

    async def _poll_cycle(self) -> PollCycleResult:
        async with self._lock:
            now = self._clock()
            result = PollCycleResult(started_at=now)
            result.checked, result.resolved = await self.resolver.resolve(now)
            result.dispatch = await self.dispatcher.dispatch()
            result.settled = await self._settled_results(result.dispatch.settled_ids)

        for resolved in result.settled:
            await self.notifier.publish(resolved)
        return result

    async def _settled_results(self, event_ids: list[int]) -> list[ResolvedEvent]:
        """Announcement values for events whose result is now on the ledger."""
        settled = []
        for event_id in event_ids:
            event = await self.store.get(event_id)
            if event is None or not event.ledger_settled or event.outcome is None:
                continue
            settled.append(ResolvedEvent.from_event(event))
        return settled

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    async def run_stale_sweep(self) -> SweepResult:
        async with self._lock:
            result = await self.canceller.sweep(self._clock())
            if result.cancelled or result.reconciled_ids:
                await self.poller.recompute_next_wake()

        if result.candidates:
            logger.info(
                f"Stale sweep: {len(result.cancelled)} cancelled, "
                f"{len(result.reconciled_ids)} reconciled, "
                f"{len(result.skipped_resolved_ids)} skipped as resolved, "
                f"{len(result.failed_ids)} failed"
            )
        if result.cancelled:
            await self.notifier.publish(CancelledBatch(events=result.cancelled))
        return result

    # ------------------------------------------------------------------
    # Supporting jobs
    # ------------------------------------------------------------------

    async def run_ingestion(self) -> IngestionResult:
        """Upsert today's fixtures from the Outcome Source."""
        today = self._clock().date()
        result = IngestionResult()
        try:
            snapshots = await self.football.fetch_batch(today, today)
        except FootballAPIError as e:
            logger.error(f"Ingestion for {today} failed: {e}")
            return result

        async with self._lock:
            now = self._clock()
            for snapshot in snapshots:
                _, created = await self.store.upsert_from_source(snapshot, now)
                if created:
                    result.created += 1
                else:
                    result.updated += 1
            result.fetched = len(snapshots)
            await self.poller.recompute_next_wake()

        logger.info(
            f"Ingested {result.fetched} fixtures for {today} "
            f"({result.created} new, {result.updated} updated)"
        )
        return result

    async def close_started_events(self) -> list[BettingClosed]:
        """Close betting on the ledger for events whose kickoff has passed."""
        closed: list[BettingClosed] = []
        async with self._lock:
            now = self._clock()
            for event in await self.store.list_to_close(now):
                try:
                    await self.ledger.close_betting(event.ledger_id)
                except LedgerRejectedError as e:
                    if not await self._already_closed(event.ledger_id):
                        logger.error(f"Failed to close betting for event {event.id}: {e}")
                        continue
                    await self.store.update_status(event.id, EventStatus.LIVE, now)
                    continue
                except LedgerError as e:
                    logger.error(f"Failed to close betting for event {event.id}: {e}")
                    continue
                await self.store.update_status(event.id, EventStatus.LIVE, now)
                closed.append(
                    BettingClosed(
                        event_id=event.id,
                        ledger_id=event.ledger_id,
                        home_team=event.home_team,
                        away_team=event.away_team,
                    )
                )

        for message in closed:
            logger.info(f"Betting closed for event {message.event_id}")
            await self.notifier.publish(message)
        return closed

    async def _already_closed(self, ledger_id: int) -> bool:
        try:
            ledger_event = await self.ledger.get_status(ledger_id)
        except LedgerError:
            return False
        return ledger_event.status != LedgerStatus.OPEN

    async def cleanup_pending_bets(self) -> int:
        removed = await self.store.cleanup_expired_pending_bets(self._clock())
        if removed:
            logger.info(f"Removed {removed} expired pending bets")
        return removed

    async def register_ledger_id(self, event_id: int, ledger_id: int) -> Event:
        """Record the ledger id assigned on first wager; the event becomes pollable."""
        async with self._lock:
            event = await self.store.set_ledger_id(event_id, ledger_id)
            await self.poller.recompute_next_wake()
        logger.info(f"Event {event_id} registered as ledger event {ledger_id}")
        return event

    async def requeue_settlement(self, event_id: int) -> bool:
        """Return a result the ledger refused to the backlog after manual repair."""
        async with self._lock:
            requeued = await self.store.requeue_settlement(event_id)
            if requeued:
                await self.poller.recompute_next_wake()
        if requeued:
            logger.info(f"Event {event_id} requeued for settlement")
        return requeued

    async def create_pending_bet(
        self, user_address: str, event_id: int, prediction: Outcome, amount: str
    ) -> int:
        """Hold a wager until the user confirms it or the timeout passes."""
        event = await self.store.get(event_id)
        if event is None:
            raise KeyError(f"Event {event_id} not found")
        if event.status != EventStatus.SCHEDULED:
            raise ValueError(f"Betting is closed for event {event_id}")
        ttl = timedelta(minutes=self.settings.scheduler.pending_bet_timeout_minutes)
        return await self.store.create_pending_bet(
            user_address, event_id, prediction, amount, ttl, self._clock()
        )

    async def status(self) -> dict:
        return {
            "events": await self.store.count_by_status(),
            "awaiting_result": len(await self.store.list_awaiting_result()),
            "settlement_backlog": len(await self.store.list_settlement_backlog()),
            "settlement_rejected": len(await self.store.list_settlement_rejected()),
            "next_poll": self.poller.next_wake.isoformat() if self.poller.next_wake else None,
            "last_poll": (
                self.poller.last_poll_at.isoformat() if self.poller.last_poll_at else None
            ),
            "paper_mode": self.ledger.config.paper_mode,
        }


@asynccontextmanager
async def open_engine(settings: Settings) -> AsyncIterator[SettlementEngine]:
    """Build an engine from settings with its HTTP clients open."""
    store = EventStore(create_db_engine(settings.resolved_database_url))
    await store.initialize()
    private_key = settings.get_ledger_private_key()

    async with AsyncExitStack() as stack:
        football = await stack.enter_async_context(
            FootballClient(settings.football, api_key=settings.football_api_key or None)
        )
        ledger = await stack.enter_async_context(
            LedgerClient(
                settings.ledger,
                api_key=settings.ledger_api_key or None,
                private_key_pem=private_key or None,
            )
        )
        engine = SettlementEngine(settings, store, football, ledger)

        if settings.telegram_bot_token and settings.telegram_chat_id:
            try:
                telegram = await stack.enter_async_context(
                    TelegramClient(
                        bot_token=settings.telegram_bot_token,
                        chat_id=settings.telegram_chat_id,
                    )
                )
                TelegramAnnouncer(telegram, settings.telegram).register(engine.notifier)
            except TelegramError as e:
                logger.warning(f"Telegram announcements disabled: {e}")
        else:
            logger.info("Telegram not configured, announcements disabled")

        yield engine

    await store.engine.dispose()
