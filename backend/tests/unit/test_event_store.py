"""Tests for event store guards."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from matchday.models import EventStatus, Outcome
from matchday.services.football import FixtureSnapshot

KICKOFF = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)


def test_upsert_creates_then_refreshes(store, match_payload) -> None:
    async def run():
        snapshot = FixtureSnapshot.from_api(match_payload(100))
        event, created = await store.upsert_from_source(snapshot, KICKOFF)
        assert created
        assert event.home_team == "Arsenal"
        assert event.competition_code == "PL"

        moved = FixtureSnapshot.from_api(
            match_payload(100, "IN_PLAY", 1, 0, kickoff=KICKOFF + timedelta(hours=1))
        )
        event, created = await store.upsert_from_source(moved, KICKOFF)
        assert not created
        assert event.kickoff_time == KICKOFF
        assert event.status == EventStatus.LIVE
        assert event.home_score == 1

    asyncio.run(run())


def test_upsert_never_touches_committed_or_cancelled(store, add_event, match_payload) -> None:
    async def run():
        finished = await add_event(100, ledger_id=1, score=(2, 1))
        cancelled = await add_event(101, ledger_id=2, status=EventStatus.POSTPONED)
        await store.mark_cancelled(cancelled.id)

        await store.upsert_from_source(
            FixtureSnapshot.from_api(match_payload(100, "IN_PLAY", 0, 0))
        )
        await store.upsert_from_source(FixtureSnapshot.from_api(match_payload(101, "SCHEDULED")))

        assert (await store.get(finished.id)).home_score == 2
        assert (await store.get(finished.id)).status == EventStatus.FINISHED
        assert (await store.get(cancelled.id)).status == EventStatus.CANCELLED

    asyncio.run(run())


def test_postponed_at_set_once_and_cleared_on_leaving(store, add_event) -> None:
    async def run():
        event = await add_event(100, ledger_id=1)
        first = KICKOFF + timedelta(minutes=5)
        later = first + timedelta(hours=1)

        assert await store.update_status(event.id, EventStatus.POSTPONED, first)
        assert not await store.update_status(event.id, EventStatus.POSTPONED, later)
        assert (await store.get(event.id)).postponed_at == first

        await store.update_status(event.id, EventStatus.SCHEDULED, first + timedelta(hours=2))
        assert (await store.get(event.id)).postponed_at is None

    asyncio.run(run())


def test_update_status_rejects_terminal_statuses(store, add_event) -> None:
    async def run():
        event = await add_event(100)
        with pytest.raises(ValueError):
            await store.update_status(event.id, EventStatus.FINISHED)
        with pytest.raises(ValueError):
            await store.update_status(event.id, EventStatus.CANCELLED)

    asyncio.run(run())


def test_record_result_writes_once(store, add_event) -> None:
    async def run():
        event = await add_event(100, ledger_id=1)

        assert await store.record_result(event.id, 1, 1, Outcome.DRAW, KICKOFF)
        assert not await store.record_result(event.id, 3, 0, Outcome.HOME, KICKOFF)

        stored = await store.get(event.id)
        assert (stored.home_score, stored.away_score, stored.outcome) == (1, 1, Outcome.DRAW)

    asyncio.run(run())


def test_finished_and_cancelled_are_exclusive(store, add_event) -> None:
    async def run():
        finished = await add_event(100, ledger_id=1, score=(1, 0))
        cancelled = await add_event(101, ledger_id=2, status=EventStatus.POSTPONED)

        assert not await store.mark_cancelled(finished.id)
        assert (await store.get(finished.id)).status == EventStatus.FINISHED

        assert await store.mark_cancelled(cancelled.id)
        assert not await store.record_result(cancelled.id, 1, 0, Outcome.HOME)
        assert (await store.get(cancelled.id)).status == EventStatus.CANCELLED

    asyncio.run(run())


def test_mark_ledger_settled_requires_committed_result(store, add_event) -> None:
    async def run():
        open_event = await add_event(100, ledger_id=1)
        finished = await add_event(101, ledger_id=2, score=(0, 2))

        assert await store.mark_ledger_settled([open_event.id, finished.id]) == 1
        assert not (await store.get(open_event.id)).ledger_settled
        assert (await store.get(finished.id)).ledger_settled
        assert await store.mark_ledger_settled([finished.id]) == 0

    asyncio.run(run())


def test_poll_target_queries(store, add_event) -> None:
    async def run():
        unregistered = await add_event(100)
        awaiting = await add_event(101, ledger_id=1)
        backlog = await add_event(102, ledger_id=2, score=(1, 0))
        stale = await add_event(103, ledger_id=3, status=EventStatus.POSTPONED)

        eligible = await store.list_eligible_for_polling()
        assert {e.id for e in eligible} == {awaiting.id, backlog.id, stale.id}
        assert {e.id for e in await store.list_awaiting_result()} == {awaiting.id, stale.id}
        assert [e.id for e in await store.list_settlement_backlog()] == [backlog.id]
        assert [e.id for e in await store.list_stale_candidates()] == [stale.id]
        assert [e.id for e in await store.list_to_close(KICKOFF)] == [awaiting.id]
        assert await store.list_to_close(KICKOFF - timedelta(minutes=1)) == []
        assert (await store.get_by_ledger_id(2)).id == backlog.id
        assert (await store.get_by_external_id(100)).id == unregistered.id
        assert await store.count_by_status() == {"scheduled": 2, "finished": 1, "postponed": 1}

    asyncio.run(run())


def test_unresolved_since_window(store, add_event) -> None:
    async def run():
        await add_event(100, ledger_id=1, kickoff=KICKOFF - timedelta(hours=30))
        inside = await add_event(101, ledger_id=2, kickoff=KICKOFF - timedelta(hours=10))
        await add_event(102, ledger_id=3, kickoff=KICKOFF)

        found = await store.list_unresolved_since(KICKOFF - timedelta(hours=24), KICKOFF)

        assert [e.id for e in found] == [inside.id]

    asyncio.run(run())


def test_ledger_id_is_unique_and_immutable(store, add_event) -> None:
    async def run():
        first = await add_event(100, ledger_id=1)
        second = await add_event(101)

        with pytest.raises(ValueError):
            await store.set_ledger_id(second.id, 1)
        with pytest.raises(ValueError):
            await store.set_ledger_id(first.id, 5)
        with pytest.raises(KeyError):
            await store.set_ledger_id(999, 5)
        assert (await store.set_ledger_id(first.id, 1)).ledger_id == 1

    asyncio.run(run())


def test_pending_bets_expire(store, add_event) -> None:
    async def run():
        event = await add_event(100)
        ttl = timedelta(minutes=5)

        await store.create_pending_bet("0xabc", event.id, Outcome.HOME, "0.1", ttl, KICKOFF)
        await store.create_pending_bet("0xabc", event.id, Outcome.AWAY, "0.2", ttl, KICKOFF)
        await store.create_pending_bet(
            "0xdef", event.id, Outcome.DRAW, "0.1", ttl, KICKOFF + ttl
        )
        assert await store.count_pending_bets() == 2

        assert await store.cleanup_expired_pending_bets(KICKOFF + ttl) == 1
        assert await store.count_pending_bets() == 1

    asyncio.run(run())


def test_settlement_rejection_guards(store, add_event) -> None:
    async def run():
        unresolved = await add_event(1, ledger_id=10)
        committed = await add_event(2, ledger_id=11, score=(0, 2))

        assert not await store.mark_settlement_rejected(unresolved.id, "refused")
        assert await store.mark_settlement_rejected(committed.id, "refused")
        assert await store.list_settlement_backlog() == []
        assert [e.id for e in await store.list_settlement_rejected()] == [committed.id]

        assert not await store.requeue_settlement(unresolved.id)
        assert await store.requeue_settlement(committed.id)
        await store.mark_ledger_settled([committed.id])
        assert not await store.mark_settlement_rejected(committed.id, "refused")

    asyncio.run(run())


def test_void_from_ledger_is_terminal(store, add_event) -> None:
    async def run():
        event = await add_event(1, ledger_id=10, score=(2, 2))

        assert await store.void_from_ledger(event.id)
        stored = await store.get(event.id)
        assert stored.status == EventStatus.CANCELLED
        assert stored.ledger_settled
        assert not stored.result_committed
        assert stored.outcome is None
        assert not stored.is_poll_target
        assert not await store.void_from_ledger(event.id)
        assert not await store.record_result(event.id, 1, 0, Outcome.HOME)

    asyncio.run(run())


def test_file_database_is_created_on_first_use(tmp_path) -> None:
    from matchday.storage import EventStore, create_db_engine

    async def run():
        store = EventStore(create_db_engine(f"sqlite:///{tmp_path / 'nested' / 'events.db'}"))
        try:
            assert await store.count_by_status() == {}
        finally:
            await store.engine.dispose()

    asyncio.run(run())
    assert (tmp_path / "nested" / "events.db").exists()
