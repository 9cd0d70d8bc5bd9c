"""Shared fixtures: in-memory store, canned match payloads and mock HTTP sources."""

import asyncio
from datetime import datetime, timezone

import httpx
import pytest

from matchday.config import Settings
from matchday.models import EventStatus, Outcome
from matchday.services.football import FixtureSnapshot, FootballClient, FootballConfig
from matchday.services.retry import RetryPolicy
from matchday.storage import EventStore, create_db_engine

KICKOFF = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)

NO_RETRY = RetryPolicy(max_retries=0, base_delay_seconds=0.0)


def _match_payload(
    match_id: int,
    status: str = "SCHEDULED",
    home: int | None = None,
    away: int | None = None,
    kickoff: datetime = KICKOFF,
    home_team: str = "Arsenal FC",
    away_team: str = "Chelsea FC",
) -> dict:
    return {
        "id": match_id,
        "utcDate": kickoff.isoformat().replace("+00:00", "Z"),
        "status": status,
        "competition": {"id": 2021, "name": "Premier League", "code": "PL"},
        "homeTeam": {"name": home_team, "shortName": home_team.replace(" FC", "")},
        "awayTeam": {"name": away_team, "shortName": away_team.replace(" FC", "")},
        "score": {"fullTime": {"home": home, "away": away}},
    }


@pytest.fixture
def match_payload():
    return _match_payload


@pytest.fixture
def store():
    store = EventStore(create_db_engine("sqlite://"))
    yield store
    asyncio.run(store.engine.dispose())


@pytest.fixture
def add_event(store: EventStore):
    """Insert an event, optionally registered on the ledger and with a committed result."""

    async def add(
        external_id: int,
        kickoff: datetime = KICKOFF,
        ledger_id: int | None = None,
        status: EventStatus | None = None,
        score: tuple[int, int] | None = None,
        observed_at: datetime | None = None,
        home_team: str = "Arsenal FC",
        away_team: str = "Chelsea FC",
    ):
        snapshot = FixtureSnapshot.from_api(
            _match_payload(
                external_id, kickoff=kickoff, home_team=home_team, away_team=away_team
            )
        )
        event, _ = await store.upsert_from_source(snapshot, observed_at or kickoff)
        if ledger_id is not None:
            event = await store.set_ledger_id(event.id, ledger_id)
        if status is not None:
            await store.update_status(event.id, status, observed_at or kickoff)
        if score is not None:
            home, away = score
            await store.record_result(
                event.id, home, away, Outcome.from_scores(home, away), observed_at or kickoff
            )
        return await store.get(event.id)

    return add


class MatchSource:
    """Programmable football-data.org stand-in served through httpx.MockTransport."""

    def __init__(self) -> None:
        self.batch: list[dict] = []
        self.singles: dict[int, dict] = {}
        self.batch_status = 200
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if "/competitions/" in path:
            if self.batch_status != 200:
                return httpx.Response(self.batch_status, json={"message": "unavailable"})
            return httpx.Response(200, json={"matches": self.batch})
        if "/matches/" in path:
            match_id = int(path.rsplit("/", 1)[-1])
            if match_id not in self.singles:
                return httpx.Response(404, json={"message": "not found"})
            return httpx.Response(200, json=self.singles[match_id])
        return httpx.Response(404)

    def client(self) -> FootballClient:
        return FootballClient(
            FootballConfig(supported_competitions=[2021], retry=NO_RETRY),
            api_key="test-key",
            transport=httpx.MockTransport(self.handler),
        )


@pytest.fixture
def source() -> MatchSource:
    return MatchSource()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        data_dir=tmp_path,
        database_url="sqlite://",
        admin_api_token="secret",
    )
