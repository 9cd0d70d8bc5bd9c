"""Event store: durable record of tracked events and their settlement flags."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from matchday.models import Event, EventStatus, Outcome
from matchday.services.football.models import FixtureSnapshot
from matchday.storage.database import create_session_factory, init_db, session_scope
from matchday.storage.models import EventRecord, PendingBetRecord

logger = logging.getLogger(__name__)

_CANCELLED = EventStatus.CANCELLED.value
_POSTPONED = EventStatus.POSTPONED.value


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _to_event(record: EventRecord) -> Event:
    return Event.model_validate(record, from_attributes=True)


def _apply_status(record: EventRecord, status: EventStatus, observed_at: datetime) -> bool:
    """Move a record to a new status, keeping postponed_at consistent."""
    if record.status == status.value:
        return False
    if status == EventStatus.POSTPONED:
        if record.postponed_at is None:
            record.postponed_at = observed_at
    elif record.status == _POSTPONED:
        record.postponed_at = None
    record.status = status.value
    return True


class EventStore:
    """Read/write accessors the settlement engine needs."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self._session_factory = create_session_factory(engine)
        self._ready = False

    async def initialize(self) -> None:
        if not self._ready:
            await init_db(self.engine)
            self._ready = True

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        await self.initialize()
        async with session_scope(self._session_factory) as session:
            yield session

    @staticmethod
    def _eligible(stmt):
        return stmt.where(
            EventRecord.ledger_id.is_not(None),
            EventRecord.status != _CANCELLED,
            EventRecord.ledger_settled.is_(False),
        )

    async def _list(self, stmt) -> list[Event]:
        async with self._session() as session:
            records = await session.scalars(
                stmt.order_by(EventRecord.kickoff_time, EventRecord.id)
            )
            return [_to_event(r) for r in records]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, event_id: int) -> Event | None:
        async with self._session() as session:
            record = await session.get(EventRecord, event_id)
            return _to_event(record) if record else None

    async def get_by_external_id(self, external_id: int) -> Event | None:
        async with self._session() as session:
            record = await session.scalar(
                select(EventRecord).where(EventRecord.external_id == external_id)
            )
            return _to_event(record) if record else None

    async def get_by_ledger_id(self, ledger_id: int) -> Event | None:
        async with self._session() as session:
            record = await session.scalar(
                select(EventRecord).where(EventRecord.ledger_id == ledger_id)
            )
            return _to_event(record) if record else None

    async def list_events(self, limit: int = 100) -> list[Event]:
        async with self._session() as session:
            records = await session.scalars(
                select(EventRecord).order_by(EventRecord.kickoff_time.desc()).limit(limit)
            )
            return [_to_event(r) for r in records]

    async def list_eligible_for_polling(self) -> list[Event]:
        """Registered on the ledger, not cancelled, not yet settled."""
        return await self._list(self._eligible(select(EventRecord)))

    async def list_awaiting_result(self) -> list[Event]:
        """Eligible events whose outcome is still unknown."""
        return await self._list(
            self._eligible(select(EventRecord)).where(
                EventRecord.result_committed.is_(False)
            )
        )

    async def list_settlement_backlog(self) -> list[Event]:
        """Committed results whose ledger write has not succeeded yet."""
        return await self._list(
            self._eligible(select(EventRecord)).where(
                EventRecord.result_committed.is_(True),
                EventRecord.outcome.is_not(None),
                EventRecord.settlement_error.is_(None),
            )
        )

    async def list_settlement_rejected(self) -> list[Event]:
        """Committed results the ledger refused, held back for manual handling."""
        return await self._list(
            self._eligible(select(EventRecord)).where(
                EventRecord.settlement_error.is_not(None),
            )
        )

    async def list_stale_candidates(self) -> list[Event]:
        """Postponed events with a ledger id that have not been voided."""
        return await self._list(
            select(EventRecord).where(
                EventRecord.status == _POSTPONED,
                EventRecord.ledger_id.is_not(None),
                EventRecord.ledger_settled.is_(False),
                EventRecord.result_committed.is_(False),
            )
        )

    async def list_unresolved_since(self, since: datetime, before: datetime) -> list[Event]:
        """Unresolved eligible events with kickoff in [since, before)."""
        return await self._list(
            self._eligible(select(EventRecord)).where(
                EventRecord.result_committed.is_(False),
                EventRecord.kickoff_time >= since,
                EventRecord.kickoff_time < before,
            )
        )

    async def list_to_close(self, now: datetime) -> list[Event]:
        """Scheduled events on the ledger whose kickoff has passed."""
        return await self._list(
            self._eligible(select(EventRecord)).where(
                EventRecord.status == EventStatus.SCHEDULED.value,
                EventRecord.kickoff_time <= now,
            )
        )

    async def count_by_status(self) -> dict[str, int]:
        async with self._session() as session:
            rows = await session.execute(
                select(EventRecord.status, func.count()).group_by(EventRecord.status)
            )
            return {status: count for status, count in rows}

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upsert_from_source(
        self, snapshot: FixtureSnapshot, observed_at: datetime | None = None
    ) -> tuple[Event, bool]:
        """Insert a newly reported match or refresh an unresolved one.

        Kickoff time is immutable once stored. Committed results and cancelled
        events are never touched. Returns (event, created).
        """
        observed_at = observed_at or _utc_now()
        async with self._session() as session:
            record = await session.scalar(
                select(EventRecord).where(EventRecord.external_id == snapshot.external_id)
            )
            if record is None:
                status = snapshot.status
                if status == EventStatus.FINISHED:
                    # Results are only committed through record_result
                    status = EventStatus.LIVE
                record = EventRecord(
                    external_id=snapshot.external_id,
                    home_team=snapshot.home_team,
                    away_team=snapshot.away_team,
                    competition=snapshot.competition,
                    competition_code=snapshot.competition_code,
                    kickoff_time=snapshot.kickoff_time,
                    status=status.value,
                    home_score=snapshot.home_score,
                    away_score=snapshot.away_score,
                    postponed_at=observed_at if status == EventStatus.POSTPONED else None,
                )
                session.add(record)
                await session.flush()
                return _to_event(record), True

            if not record.result_committed and record.status != _CANCELLED:
                if snapshot.status != EventStatus.FINISHED:
                    _apply_status(record, snapshot.status, observed_at)
                record.home_score = snapshot.home_score
                record.away_score = snapshot.away_score
            await session.flush()
            return _to_event(record), False

    async def set_ledger_id(self, event_id: int, ledger_id: int) -> Event:
        async with self._session() as session:
            record = await session.get(EventRecord, event_id)
            if record is None:
                raise KeyError(f"Event {event_id} not found")
            if record.ledger_id is not None and record.ledger_id != ledger_id:
                raise ValueError(
                    f"Event {event_id} already registered as ledger id {record.ledger_id}"
                )
            owner = await session.scalar(
                select(EventRecord.id).where(EventRecord.ledger_id == ledger_id)
            )
            if owner is not None and owner != event_id:
                raise ValueError(f"Ledger id {ledger_id} already belongs to event {owner}")
            record.ledger_id = ledger_id
            await session.flush()
            return _to_event(record)

    async def update_status(
        self,
        event_id: int,
        status: EventStatus,
        observed_at: datetime | None = None,
    ) -> bool:
        """Mirror a non-terminal source status. Returns True if it changed."""
        if status in (EventStatus.FINISHED, EventStatus.CANCELLED):
            raise ValueError(f"Use record_result/mark_cancelled for status {status.value}")
        async with self._session() as session:
            record = await session.get(EventRecord, event_id)
            if record is None or record.result_committed or record.status == _CANCELLED:
                return False
            return _apply_status(record, status, observed_at or _utc_now())

    async def update_score(
        self, event_id: int, home_score: int | None, away_score: int | None
    ) -> None:
        async with self._session() as session:
            record = await session.get(EventRecord, event_id)
            if record is None or record.result_committed:
                return
            record.home_score = home_score
            record.away_score = away_score

    async def record_result(
        self,
        event_id: int,
        home_score: int,
        away_score: int,
        outcome: Outcome,
        resolved_at: datetime | None = None,
    ) -> bool:
        """Persist scores, outcome and finished status together.

        Refuses cancelled events and events whose result is already committed.
        """
        async with self._session() as session:
            record = await session.get(EventRecord, event_id)
            if record is None or record.result_committed or record.status == _CANCELLED:
                return False
            record.home_score = home_score
            record.away_score = away_score
            record.outcome = int(outcome)
            record.status = EventStatus.FINISHED.value
            record.postponed_at = None
            record.result_committed = True
            record.resolved_at = resolved_at or _utc_now()
            return True

    async def mark_ledger_settled(self, event_ids: list[int]) -> int:
        """Flag committed results as written to the ledger. Returns rows changed."""
        if not event_ids:
            return 0
        async with self._session() as session:
            records = await session.scalars(
                select(EventRecord).where(EventRecord.id.in_(event_ids))
            )
            changed = 0
            for record in records:
                if record.ledger_settled:
                    continue
                if not record.result_committed or record.outcome is None:
                    logger.error(
                        f"Refusing to mark event {record.id} settled without a committed result"
                    )
                    continue
                record.ledger_settled = True
                record.settlement_error = None
                changed += 1
            return changed

    async def mark_settlement_rejected(self, event_id: int, reason: str) -> bool:
        """Take a committed result out of the backlog after a permanent ledger refusal."""
        async with self._session() as session:
            record = await session.get(EventRecord, event_id)
            if record is None or record.ledger_settled or not record.result_committed:
                return False
            record.settlement_error = reason[:500]
            return True

    async def requeue_settlement(self, event_id: int) -> bool:
        """Put a rejected result back into the backlog."""
        async with self._session() as session:
            record = await session.get(EventRecord, event_id)
            if record is None or record.settlement_error is None:
                return False
            record.settlement_error = None
            return True

    async def adopt_ledger_outcome(self, event_id: int, outcome: Outcome) -> bool:
        """The ledger already resolved this event: its outcome replaces ours."""
        async with self._session() as session:
            record = await session.get(EventRecord, event_id)
            if record is None or not record.result_committed:
                return False
            record.outcome = int(outcome)
            record.ledger_settled = True
            record.settlement_error = None
            return True

    async def void_from_ledger(self, event_id: int) -> bool:
        """The ledger cancelled an event we hold a result for. Ledger state wins."""
        async with self._session() as session:
            record = await session.get(EventRecord, event_id)
            if record is None or record.status == _CANCELLED:
                return False
            record.status = _CANCELLED
            record.outcome = None
            record.result_committed = False
            record.ledger_settled = True
            record.settlement_error = None
            return True

    async def mark_cancelled(self, event_id: int) -> bool:
        """Terminal cancellation: status cancelled and settled on the ledger."""
        async with self._session() as session:
            record = await session.get(EventRecord, event_id)
            if record is None:
                return False
            if record.result_committed:
                logger.error(f"Refusing to cancel event {event_id} with a committed result")
                return False
            record.status = _CANCELLED
            record.ledger_settled = True
            return True

    # ------------------------------------------------------------------
    # Pending bets
    # ------------------------------------------------------------------

    async def create_pending_bet(
        self,
        user_address: str,
        event_id: int,
        prediction: Outcome,
        amount: str,
        ttl: timedelta,
        now: datetime | None = None,
    ) -> int:
        """Replace the user's pending bet with a new one expiring after ttl."""
        now = now or _utc_now()
        async with self._session() as session:
            await session.execute(
                delete(PendingBetRecord).where(PendingBetRecord.user_address == user_address)
            )
            record = PendingBetRecord(
                user_address=user_address,
                event_id=event_id,
                prediction=int(prediction),
                amount=amount,
                created_at=now,
                expires_at=now + ttl,
            )
            session.add(record)
            await session.flush()
            return record.id

    async def count_pending_bets(self) -> int:
        async with self._session() as session:
            count = await session.scalar(select(func.count()).select_from(PendingBetRecord))
            return count or 0

    async def cleanup_expired_pending_bets(self, now: datetime | None = None) -> int:
        now = now or _utc_now()
        async with self._session() as session:
            result = await session.execute(
                delete(PendingBetRecord).where(PendingBetRecord.expires_at <= now)
            )
            return result.rowcount or 0
