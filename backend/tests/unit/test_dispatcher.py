"""Tests for batch settlement onto the ledger."""

import asyncio
import json

import httpx
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from matchday.models import EventStatus, Outcome
from matchday.services.ledger import (
    LedgerClient,
    LedgerConfig,
    LedgerRejectedError,
    LedgerStatus,
    LedgerUnavailableError,
    SettlementInstruction,
)
from matchday.services.retry import RetryPolicy
from matchday.settlement import BatchSettlementDispatcher


def live_ledger(handler) -> LedgerClient:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode()
    return LedgerClient(
        LedgerConfig(
            base_url="https://ledger.test/api/v1",
            paper_mode=False,
            retry=RetryPolicy(max_retries=0),
        ),
        api_key="manager-key",
        private_key_pem=pem,
        transport=httpx.MockTransport(handler),
    )


class FlakyLedger(LedgerClient):
    """Paper ledger whose first ``failures`` batch submissions fail."""

    def __init__(self, failures: int = 0):
        super().__init__(LedgerConfig(paper_mode=True))
        self.failures = failures
        self.batches: list[list[int]] = []

    async def submit_batch(self, instructions):
        self.batches.append([i.ledger_id for i in instructions])
        if self.failures:
            self.failures -= 1
            raise LedgerUnavailableError("ledger unavailable")
        return await super().submit_batch(instructions)


async def dispatch(store, ledger, max_batch_size=50):
    return await BatchSettlementDispatcher(store, ledger, max_batch_size).dispatch()


def test_empty_backlog_is_a_noop(store, add_event) -> None:
    ledger = FlakyLedger()

    async def run():
        await add_event(1, ledger_id=10)
        return await dispatch(store, ledger)

    result = asyncio.run(run())

    assert result.submitted == 0
    assert ledger.batches == []
    assert ledger.paper_transactions == []


def test_partially_settled_batch_marks_everything(store, add_event) -> None:
    ledger = FlakyLedger()

    async def run():
        events = [await add_event(i, ledger_id=100 + i, score=(i, 1)) for i in range(1, 6)]
        await ledger.resolve(101, Outcome.HOME)
        await ledger.resolve(102, Outcome.DRAW)
        ledger.batches.clear()

        result = await dispatch(store, ledger)

        assert sorted(result.settled_ids) == sorted(e.id for e in events)
        assert sorted(result.skipped_ledger_ids) == [101, 102]
        assert result.failed_ids == []
        assert len(ledger.batches) == 1
        assert all([(await store.get(e.id)).ledger_settled for e in events])
        assert await store.list_settlement_backlog() == []

    asyncio.run(run())


def test_failed_submission_leaves_flags_unchanged(store, add_event) -> None:
    async def run():
        event = await add_event(1, ledger_id=10, score=(2, 0))

        result = await dispatch(store, FlakyLedger(failures=1))

        assert result.failed_ids == [event.id]
        assert not (await store.get(event.id)).ledger_settled
        assert [e.id for e in await store.list_settlement_backlog()] == [event.id]

    asyncio.run(run())


def test_backlog_converges_after_repeated_failures(store, add_event) -> None:
    ledger = FlakyLedger(failures=3)

    async def run():
        committed = []
        for cycle in range(3):
            committed.append(
                await add_event(cycle + 1, ledger_id=50 + cycle, score=(cycle, 0))
            )
            result = await dispatch(store, ledger)
            assert sorted(result.failed_ids) == sorted(e.id for e in committed)

        result = await dispatch(store, ledger)

        assert sorted(result.settled_ids) == sorted(e.id for e in committed)
        assert ledger.batches[-1] == [50, 51, 52]
        assert all([(await store.get(e.id)).ledger_settled for e in committed])

    asyncio.run(run())


def test_resubmission_is_idempotent(store, add_event) -> None:
    ledger = FlakyLedger()

    async def run():
        event = await add_event(1, ledger_id=10, score=(1, 3))

        first = await dispatch(store, ledger)
        second = await dispatch(store, ledger)

        assert first.settled_ids == [event.id]
        assert second.submitted == 0

        receipt = await ledger.submit_batch(
            [SettlementInstruction(ledger_id=10, outcome=Outcome.AWAY)]
        )
        status = await ledger.get_status(10)
        return receipt, status

    receipt, status = asyncio.run(run())
    assert receipt.skipped == [10]
    assert status.status == LedgerStatus.RESOLVED
    assert status.outcome == Outcome.AWAY


def test_per_event_and_batched_submission_agree(store, add_event) -> None:
    batched = FlakyLedger()
    single = FlakyLedger()

    async def run():
        for i in range(1, 4):
            await add_event(i, ledger_id=20 + i, score=(i, 2))
        await dispatch(store, batched)

        for ledger_id, outcome in ((21, Outcome.AWAY), (22, Outcome.DRAW), (23, Outcome.HOME)):
            await single.resolve(ledger_id, outcome)
        return (
            [await single.get_status(i) for i in (21, 22, 23)],
            [await batched.get_status(i) for i in (21, 22, 23)],
        )

    one_by_one, in_batch = asyncio.run(run())
    assert one_by_one == in_batch


def test_large_backlog_is_chunked(store, add_event) -> None:
    ledger = FlakyLedger()

    async def run():
        for i in range(1, 6):
            await add_event(i, ledger_id=i, score=(1, 0))
        return await dispatch(store, ledger, max_batch_size=2)

    result = asyncio.run(run())

    assert [len(b) for b in ledger.batches] == [2, 2, 1]
    assert len(result.tx_ids) == 3
    assert len(result.settled_ids) == 5


class RejectingLedger(FlakyLedger):
    """Paper ledger that refuses any submission containing one of ``refused``."""

    def __init__(self, refused: set[int]):
        super().__init__()
        self.refused = refused

    async def submit_batch(self, instructions):
        self.batches.append([i.ledger_id for i in instructions])
        if any(i.ledger_id in self.refused for i in instructions):
            raise LedgerRejectedError("unknown ledger event", status_code=400)
        return await LedgerClient.submit_batch(self, instructions)


def test_rejected_batch_falls_back_to_single_events(store, add_event) -> None:
    ledger = RejectingLedger(refused={999})

    async def run():
        good = [
            await add_event(1, ledger_id=1, score=(2, 0)),
            await add_event(2, ledger_id=2, score=(0, 0)),
        ]
        bad = await add_event(3, ledger_id=999, score=(1, 2))

        result = await dispatch(store, ledger)

        assert sorted(result.settled_ids) == sorted(e.id for e in good)
        assert result.rejected_ids == [bad.id]
        assert result.failed_ids == []
        assert all([(await store.get(e.id)).ledger_settled for e in good])

        held = await store.get(bad.id)
        assert not held.ledger_settled
        assert "unknown ledger event" in held.settlement_error
        assert await store.list_settlement_backlog() == []
        assert [e.id for e in await store.list_settlement_rejected()] == [bad.id]

    asyncio.run(run())


def test_rejected_event_is_not_resubmitted_every_cycle(store, add_event) -> None:
    ledger = RejectingLedger(refused={999})

    async def run():
        await add_event(1, ledger_id=1, score=(2, 0))
        bad = await add_event(2, ledger_id=999, score=(1, 2))

        await dispatch(store, ledger)
        submitted_before = len(ledger.batches)
        for _ in range(5):
            assert (await dispatch(store, ledger)).submitted == 0
        assert len(ledger.batches) == submitted_before

        assert await store.requeue_settlement(bad.id)
        ledger.refused.clear()
        result = await dispatch(store, ledger)
        assert result.settled_ids == [bad.id]
        assert (await store.get(bad.id)).settlement_error is None

    asyncio.run(run())


def test_rejection_over_http_settles_the_rest(store, add_event) -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else {}
        calls.append(request.url.path)
        if request.url.path.endswith("/resolve-batch"):
            ids = [s["ledger_id"] for s in body["settlements"]]
            if 999 in ids:
                return httpx.Response(400, json={"error": "unknown event 999"})
            return httpx.Response(200, json={"tx_id": "0xb", "settled": ids})
        ledger_id = int(request.url.path.split("/")[-2])
        if ledger_id == 999:
            return httpx.Response(400, json={"error": "unknown event 999"})
        return httpx.Response(200, json={"tx_id": f"0x{ledger_id}", "settled": [ledger_id]})

    async def run():
        for external_id, ledger_id in ((1, 1), (2, 2), (3, 999)):
            await add_event(external_id, ledger_id=ledger_id, score=(1, 0))
        async with live_ledger(handler) as ledger:
            dispatcher = BatchSettlementDispatcher(store, ledger)
            results = [await dispatcher.dispatch() for _ in range(3)]
        return results, await store.list_settlement_backlog()

    (first, second, third), backlog = asyncio.run(run())

    assert len(first.settled_ids) == 2
    assert len(first.rejected_ids) == 1
    assert second.submitted == third.submitted == 0
    assert calls.count("/api/v1/events/resolve-batch") == 1
    assert backlog == []


def test_skipped_event_cancelled_on_ledger_is_voided(store, add_event) -> None:
    ledger = FlakyLedger()

    async def run():
        event = await add_event(1, ledger_id=10, score=(2, 1))
        await ledger.cancel(10, "postponed")

        result = await dispatch(store, ledger)

        assert result.voided_ids == [event.id]
        assert result.settled_ids == []
        stored = await store.get(event.id)
        assert stored.status == EventStatus.CANCELLED
        assert stored.ledger_settled
        assert stored.outcome is None
        assert await store.list_settlement_backlog() == []

    asyncio.run(run())


def test_skipped_event_takes_ledger_outcome(store, add_event) -> None:
    ledger = FlakyLedger()

    async def run():
        event = await add_event(1, ledger_id=10, score=(2, 1))
        await ledger.resolve(10, Outcome.AWAY)

        result = await dispatch(store, ledger)

        assert result.settled_ids == [event.id]
        stored = await store.get(event.id)
        assert stored.ledger_settled
        assert stored.outcome == Outcome.AWAY

    asyncio.run(run())


def test_credential_failure_keeps_whole_backlog(store, add_event) -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        return httpx.Response(401, json={"error": "bad signature"})

    async def run():
        events = [
            await add_event(1, ledger_id=1, score=(1, 0)),
            await add_event(2, ledger_id=2, score=(0, 1)),
        ]
        async with live_ledger(handler) as ledger:
            result = await BatchSettlementDispatcher(store, ledger).dispatch()
        backlog = await store.list_settlement_backlog()
        return events, result, backlog

    events, result, backlog = asyncio.run(run())

    assert sorted(result.failed_ids) == sorted(e.id for e in events)
    assert result.rejected_ids == []
    assert calls == ["/api/v1/events/resolve-batch"]
    assert [e.id for e in backlog] == [e.id for e in events]
