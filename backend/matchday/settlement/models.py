"""Result values produced by the settlement engine."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from matchday.models import Event, Outcome


class ResolvedEvent(BaseModel):
    """An event with a committed result."""

    event_id: int
    ledger_id: int | None
    home_team: str
    away_team: str
    competition: str
    home_score: int
    away_score: int
    outcome: Outcome

    @classmethod
    def from_event(cls, event: Event) -> ResolvedEvent:
        return cls(
            event_id=event.id,
            ledger_id=event.ledger_id,
            home_team=event.home_team,
            away_team=event.away_team,
            competition=event.competition,
            home_score=event.home_score,
            away_score=event.away_score,
            outcome=event.outcome,
        )

    @property
    def winner(self) -> str:
        if self.outcome == Outcome.HOME:
            return self.home_team
        if self.outcome == Outcome.AWAY:
            return self.away_team
        return "Draw"


class CancelledEvent(BaseModel):
    """An event voided on the ledger by the stale sweep."""

    event_id: int
    ledger_id: int
    home_team: str
    away_team: str
    competition: str
    tx_id: str = ""

    @classmethod
    def from_event(cls, event: Event, tx_id: str = "") -> CancelledEvent:
        return cls(
            event_id=event.id,
            ledger_id=event.ledger_id,
            home_team=event.home_team,
            away_team=event.away_team,
            competition=event.competition,
            tx_id=tx_id,
        )


class CancelledBatch(BaseModel):
    """All events cancelled in one sweep, announced together."""

    events: list[CancelledEvent]


class BettingClosed(BaseModel):
    event_id: int
    ledger_id: int
    home_team: str
    away_team: str


class DispatchResult(BaseModel):
    """Outcome of one pass over the settlement backlog."""

    submitted: int = 0
    settled_ids: list[int] = Field(default_factory=list)
    skipped_ledger_ids: list[int] = Field(default_factory=list)
    failed_ids: list[int] = Field(default_factory=list)
    rejected_ids: list[int] = Field(default_factory=list)
    voided_ids: list[int] = Field(default_factory=list)
    tx_ids: list[str] = Field(default_factory=list)


class PollCycleResult(BaseModel):
    """Summary of a resolver + dispatcher run."""

    started_at: datetime
    checked: int = 0
    resolved: list[ResolvedEvent] = Field(default_factory=list)
    settled: list[ResolvedEvent] = Field(default_factory=list)
    dispatch: DispatchResult = Field(default_factory=DispatchResult)
    next_wake: datetime | None = None


class SweepResult(BaseModel):
    """Summary of a stale-event sweep."""

    started_at: datetime
    candidates: int = 0
    cancelled: list[CancelledEvent] = Field(default_factory=list)
    reconciled_ids: list[int] = Field(default_factory=list)
    skipped_resolved_ids: list[int] = Field(default_factory=list)
    failed_ids: list[int] = Field(default_factory=list)


class IngestionResult(BaseModel):
    fetched: int = 0
    created: int = 0
    updated: int = 0
