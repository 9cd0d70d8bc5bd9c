"""Tests for the settlement ledger client."""

import asyncio
import base64
import hashlib
import json

import httpx
import pytest
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from matchday.models import Outcome
from matchday.services.ledger import (
    LedgerAuthError,
    LedgerClient,
    LedgerConfig,
    LedgerRejectedError,
    LedgerStatus,
    LedgerUnavailableError,
    SettlementInstruction,
)
from matchday.services.retry import RetryPolicy

BASE_URL = "https://ledger.test/api/v1"
FAST_RETRY = RetryPolicy(max_retries=1, base_delay_seconds=0.0, max_delay_seconds=0.0)


def generate_key():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode()
    return key, pem


def live_client(handler, pem) -> LedgerClient:
    return LedgerClient(
        LedgerConfig(base_url=BASE_URL, paper_mode=False, retry=FAST_RETRY),
        api_key="manager-key",
        private_key_pem=pem,
        transport=httpx.MockTransport(handler),
    )


def test_paper_mode_without_credentials() -> None:
    client = LedgerClient(LedgerConfig(paper_mode=True))

    async def run():
        async with client:
            receipt = await client.submit_batch(
                [
                    SettlementInstruction(ledger_id=1, outcome=Outcome.HOME),
                    SettlementInstruction(ledger_id=2, outcome=Outcome.DRAW),
                ]
            )
            again = await client.resolve(1, Outcome.HOME)
            return receipt, again, await client.get_status(2)

    receipt, again, status = asyncio.run(run())
    assert receipt.tx_id.startswith("paper_")
    assert receipt.settled == [1, 2]
    assert again.skipped == [1]
    assert status.status == LedgerStatus.RESOLVED
    assert status.outcome == Outcome.DRAW


def test_paper_mode_cannot_cancel_resolved_event() -> None:
    client = LedgerClient(LedgerConfig(paper_mode=True))

    async def run():
        await client.resolve(3, Outcome.AWAY)
        await client.cancel(3, "postponed")

    with pytest.raises(LedgerRejectedError):
        asyncio.run(run())


def test_paper_mode_close_then_cancel() -> None:
    client = LedgerClient(LedgerConfig(paper_mode=True))

    async def run():
        await client.close_betting(4)
        closed = await client.get_status(4)
        await client.cancel(4, "postponed")
        return closed, await client.get_status(4)

    closed, cancelled = asyncio.run(run())
    assert closed.status == LedgerStatus.CLOSED
    assert cancelled.status == LedgerStatus.CANCELLED
    assert cancelled.cancel_reason == "postponed"


def test_empty_batch_is_rejected() -> None:
    with pytest.raises(ValueError):
        asyncio.run(LedgerClient(LedgerConfig(paper_mode=True)).submit_batch([]))


def test_live_batch_is_signed() -> None:
    key, pem = generate_key()
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"tx_id": "0xabc", "settled": [5], "skipped": [6]})

    async def run():
        async with live_client(handler, pem) as client:
            return await client.submit_batch(
                [
                    SettlementInstruction(ledger_id=5, outcome=Outcome.HOME),
                    SettlementInstruction(ledger_id=6, outcome=Outcome.AWAY),
                ]
            )

    receipt = asyncio.run(run())
    assert receipt.tx_id == "0xabc"
    assert receipt.skipped == [6]

    request = seen[0]
    assert request.url.path == "/api/v1/events/resolve-batch"
    assert json.loads(request.content) == {
        "settlements": [{"ledger_id": 5, "outcome": 1}, {"ledger_id": 6, "outcome": 3}]
    }
    assert request.headers["LEDGER-ACCESS-KEY"] == "manager-key"

    timestamp = request.headers["LEDGER-ACCESS-TIMESTAMP"]
    digest = hashlib.sha256(request.content).hexdigest()
    assert request.headers["LEDGER-CONTENT-SHA256"] == digest
    message = f"{timestamp}POST/api/v1/events/resolve-batch{digest}".encode()
    key.public_key().verify(
        base64.b64decode(request.headers["LEDGER-ACCESS-SIGNATURE"]),
        message,
        padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=padding.PSS.MAX_LENGTH),
        hashes.SHA256(),
    )


def test_live_status_read() -> None:
    _, pem = generate_key()

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/v1/events/9"
        return httpx.Response(
            200, json={"event": {"ledger_id": 9, "status": "RESOLVED", "outcome": 2}}
        )

    async def run():
        async with live_client(handler, pem) as client:
            return await client.get_status(9)

    status = asyncio.run(run())
    assert status.status == LedgerStatus.RESOLVED
    assert status.outcome == Outcome.DRAW


def test_unavailable_after_retries() -> None:
    _, pem = generate_key()
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(503)

    async def run():
        async with live_client(handler, pem) as client:
            await client.cancel(1, "postponed")

    with pytest.raises(LedgerUnavailableError):
        asyncio.run(run())
    assert len(calls) == FAST_RETRY.max_attempts


def test_rejection_is_permanent() -> None:
    _, pem = generate_key()
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(400, text="invalid outcome")

    async def run():
        async with live_client(handler, pem) as client:
            await client.resolve(1, Outcome.HOME)

    with pytest.raises(LedgerRejectedError):
        asyncio.run(run())
    assert len(calls) == 1


def test_live_writes_require_credentials() -> None:
    client = LedgerClient(
        LedgerConfig(base_url=BASE_URL, paper_mode=False),
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json={})),
    )

    async def run():
        async with client:
            await client.close_betting(1)

    with pytest.raises(LedgerAuthError):
        asyncio.run(run())


def test_unreadable_manager_key_is_an_auth_error() -> None:
    with pytest.raises(LedgerAuthError):
        LedgerClient(LedgerConfig(paper_mode=False), api_key="k", private_key_pem="not a key")


def test_retried_write_is_signed_again() -> None:
    key, pem = generate_key()
    timestamps = []

    def handler(request: httpx.Request) -> httpx.Response:
        timestamps.append(request.headers["LEDGER-ACCESS-TIMESTAMP"])
        if len(timestamps) == 1:
            return httpx.Response(503)
        return httpx.Response(200, json={"tx_id": "0xc"})

    client = live_client(handler, pem)
    ticks = iter([1000.0, 1001.0])
    client.auth._clock = lambda: next(ticks)

    async def run():
        async with client:
            return await client.cancel(4, "postponed")

    assert asyncio.run(run()) == "0xc"
    assert timestamps == ["1000000", "1001000"]
