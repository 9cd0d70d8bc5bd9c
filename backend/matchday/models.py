"""Domain values shared by the store, the clients and the settlement engine."""

from __future__ import annotations

from datetime import datetime
from enum import Enum, IntEnum

from pydantic import BaseModel, ConfigDict


class EventStatus(str, Enum):
    """Lifecycle status of a tracked event."""

    SCHEDULED = "scheduled"
    LIVE = "live"
    FINISHED = "finished"
    POSTPONED = "postponed"
    CANCELLED = "cancelled"


class Outcome(IntEnum):
    """Final result of an event. Values match the ledger's wire encoding."""

    HOME = 1
    DRAW = 2
    AWAY = 3

    @classmethod
    def from_scores(cls, home_score: int | None, away_score: int | None) -> Outcome | None:
        """Higher score wins, equal scores draw. Returns None on missing data."""
        if home_score is None or away_score is None:
            return None
        if home_score > away_score:
            return cls.HOME
        if home_score < away_score:
            return cls.AWAY
        return cls.DRAW

    @property
    def label(self) -> str:
        return self.name.capitalize()


class Event(BaseModel):
    """Read-only snapshot of a stored event."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    external_id: int
    ledger_id: int | None = None
    home_team: str
    away_team: str
    competition: str
    competition_code: str = ""
    kickoff_time: datetime
    status: EventStatus = EventStatus.SCHEDULED
    home_score: int | None = None
    away_score: int | None = None
    outcome: Outcome | None = None
    result_committed: bool = False
    ledger_settled: bool = False
    settlement_error: str | None = None
    postponed_at: datetime | None = None
    resolved_at: datetime | None = None

    @property
    def label(self) -> str:
        return f"{self.home_team} vs {self.away_team}"

    @property
    def is_poll_target(self) -> bool:
        """Eligible for polling: registered on the ledger, unsettled, not cancelled."""
        return (
            self.ledger_id is not None
            and self.status != EventStatus.CANCELLED
            and not self.ledger_settled
        )

    @property
    def awaiting_result(self) -> bool:
        return self.is_poll_target and not self.result_committed
