"""Resolution: turn Outcome Source snapshots into committed results."""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone

from matchday.config import ResolutionConfig
from matchday.exceptions import InvalidOutcomeError
from matchday.models import Event, EventStatus, Outcome
from matchday.services.football import (
    FixtureSnapshot,
    FootballAPIError,
    FootballClient,
    FootballNotFoundError,
)
from matchday.settlement.models import ResolvedEvent
from matchday.storage import EventStore

logger = logging.getLogger(__name__)


def _day_start(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def outcome_for(event: Event, snapshot: FixtureSnapshot) -> Outcome | None:
    """Outcome of a finished snapshot, None if a score is missing."""
    if not snapshot.has_full_score:
        return None
    if snapshot.home_score < 0 or snapshot.away_score < 0:
        raise InvalidOutcomeError(
            f"Negative score {snapshot.home_score}-{snapshot.away_score}",
            event_id=event.id,
        )
    return snapshot.outcome


class ResolutionResolver:
    """Fetches current match state and classifies every event awaiting a result.

    Today's matches come from one batch request. Unresolved matches from
    earlier days, back to ``lookback_hours``, are fetched one by one.
    """

    def __init__(
        self,
        store: EventStore,
        football: FootballClient,
        config: ResolutionConfig | None = None,
    ):
        self.store = store
        self.football = football
        self.config = config or ResolutionConfig()

    async def resolve(self, now: datetime) -> tuple[int, list[ResolvedEvent]]:
        """Run one resolution pass. Returns (events checked, newly resolved)."""
        today_start = _day_start(now.date())
        lookback_start = now - timedelta(hours=self.config.lookback_hours)

        todays = [
            e
            for e in await self.store.list_awaiting_result()
            if today_start <= e.kickoff_time <= now
        ]
        older = await self.store.list_unresolved_since(lookback_start, today_start)

        pairs: list[tuple[Event, FixtureSnapshot]] = []
        if todays:
            pairs.extend(await self._fetch_todays(todays, now.date()))
        if older:
            logger.info(f"Checking {len(older)} unresolved events from earlier days")
            pairs.extend(await self._fetch_older(older))

        resolved: list[ResolvedEvent] = []
        for event, snapshot in pairs:
            try:
                result = await self._classify(event, snapshot, now)
            except InvalidOutcomeError as e:
                logger.error(
                    f"Event {e.event_id} ({event.label}) has unusable outcome data: {e}. "
                    "Manual resolution required"
                )
                continue
            if result is not None:
                resolved.append(result)

        if resolved:
            logger.info(f"Resolved {len(resolved)} events this cycle")
        return len(pairs), resolved

    async def _fetch_todays(
        self, events: list[Event], today: date
    ) -> list[tuple[Event, FixtureSnapshot]]:
        try:
            snapshots = await self.football.fetch_batch(today, today)
        except FootballAPIError as e:
            logger.error(f"Batch fetch for {today} failed: {e}")
            return []

        by_external_id = {s.external_id: s for s in snapshots}
        pairs = []
        for event in events:
            snapshot = by_external_id.get(event.external_id)
            if snapshot is None:
                logger.debug(f"Event {event.id} missing from batch response")
                continue
            pairs.append((event, snapshot))
        return pairs

    async def _fetch_older(self, events: list[Event]) -> list[tuple[Event, FixtureSnapshot]]:
        pairs = []
        for event in events:
            try:
                snapshot = await self.football.fetch_single(event.external_id)
            except FootballNotFoundError:
                logger.error(
                    f"Event {event.id} (external {event.external_id}) not found at the "
                    "source. Manual resolution required"
                )
                continue
            except FootballAPIError as e:
                logger.warning(f"Could not fetch event {event.id}: {e}")
                continue
            pairs.append((event, snapshot))
        return pairs

    async def _classify(
        self, event: Event, snapshot: FixtureSnapshot, now: datetime
    ) -> ResolvedEvent | None:
        status = snapshot.status

        if status != EventStatus.FINISHED:
            if await self.store.update_status(event.id, status, now):
                logger.info(f"Event {event.id} ({event.label}) is now {status.value}")
            if status == EventStatus.LIVE:
                await self.store.update_score(
                    event.id, snapshot.home_score, snapshot.away_score
                )
            return None

        outcome = outcome_for(event, snapshot)
        if outcome is None:
            logger.warning(
                f"Event {event.id} ({event.label}) reported finished without a full "
                f"score ({snapshot.home_score}-{snapshot.away_score}), retrying next poll"
            )
            return None

        if not await self.store.record_result(
            event.id, snapshot.home_score, snapshot.away_score, outcome, now
        ):
            return None

        logger.info(
            f"Resolved event {event.id}: {event.home_team} {snapshot.home_score}-"
            f"{snapshot.away_score} {event.away_team} ({outcome.label})"
        )
        return ResolvedEvent(
            event_id=event.id,
            ledger_id=event.ledger_id,
            home_team=event.home_team,
            away_team=event.away_team,
            competition=event.competition,
            home_score=snapshot.home_score,
            away_score=snapshot.away_score,
            outcome=outcome,
        )
