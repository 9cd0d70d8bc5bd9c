from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from pydantic import BaseModel, field_validator

from matchday.models import EventStatus, Outcome

logger = logging.getLogger(__name__)

_STATUS_MAP: dict[str, EventStatus] = {
    "SCHEDULED": EventStatus.SCHEDULED,
    "TIMED": EventStatus.SCHEDULED,
    "IN_PLAY": EventStatus.LIVE,
    "PAUSED": EventStatus.LIVE,
    "HALFTIME": EventStatus.LIVE,
    "LIVE": EventStatus.LIVE,
    "EXTRA_TIME": EventStatus.LIVE,
    "PENALTY_SHOOTOUT": EventStatus.LIVE,
    "FINISHED": EventStatus.FINISHED,
    "AWARDED": EventStatus.FINISHED,
    "POSTPONED": EventStatus.POSTPONED,
    "SUSPENDED": EventStatus.POSTPONED,
    # Voiding on the ledger is driven by the stale-event sweep
    "CANCELLED": EventStatus.POSTPONED,
}


def normalize_status(raw_status: str) -> EventStatus:
    """Map a football-data.org status string onto the local lifecycle."""
    status = _STATUS_MAP.get(raw_status.strip().upper())
    if status is None:
        logger.warning(f"Unknown source status {raw_status!r}, treating as scheduled")
        return EventStatus.SCHEDULED
    return status


class FixtureSnapshot(BaseModel):
    """Current state of one match as reported by the Outcome Source."""

    external_id: int
    raw_status: str
    home_team: str
    away_team: str
    competition: str
    competition_code: str
    kickoff_time: datetime
    home_score: int | None = None
    away_score: int | None = None

    @field_validator("kickoff_time", mode="before")
    @classmethod
    def parse_kickoff(cls, v: Any) -> Any:
        if isinstance(v, str):
            return datetime.fromisoformat(v.replace("Z", "+00:00"))
        return v

    @property
    def status(self) -> EventStatus:
        return normalize_status(self.raw_status)

    @property
    def has_full_score(self) -> bool:
        return self.home_score is not None and self.away_score is not None

    @property
    def outcome(self) -> Outcome | None:
        return Outcome.from_scores(self.home_score, self.away_score)

    @classmethod
    def from_api(cls, data: dict[str, Any] | None) -> FixtureSnapshot | None:
        """Build a snapshot from an API match object, or None if it is unusable."""
        if not data:
            return None

        match_id = data.get("id")
        home = data.get("homeTeam") or {}
        away = data.get("awayTeam") or {}
        competition = data.get("competition") or {}
        full_time = (data.get("score") or {}).get("fullTime") or {}

        if (
            not isinstance(match_id, int)
            or match_id <= 0
            or not home.get("name")
            or not away.get("name")
            or not competition.get("name")
            or not data.get("utcDate")
            or not data.get("status")
        ):
            logger.warning(
                f"Dropping invalid match record: id={match_id!r} "
                f"home={home.get('name')!r} away={away.get('name')!r} "
                f"competition={competition.get('name')!r}"
            )
            return None

        try:
            return cls(
                external_id=match_id,
                raw_status=data["status"],
                home_team=home.get("shortName") or home["name"],
                away_team=away.get("shortName") or away["name"],
                competition=competition["name"],
                competition_code=competition.get("code") or "",
                kickoff_time=data["utcDate"],
                home_score=full_time.get("home"),
                away_score=full_time.get("away"),
            )
        except ValueError as e:
            logger.warning(f"Dropping match {match_id}: {e}")
            return None
