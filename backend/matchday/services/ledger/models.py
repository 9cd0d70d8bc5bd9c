from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from matchday.models import Outcome


class LedgerStatus(str, Enum):
    """Settlement state of an event on the ledger."""

    OPEN = "open"
    CLOSED = "closed"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (LedgerStatus.RESOLVED, LedgerStatus.CANCELLED)


class SettlementInstruction(BaseModel):
    """One (ledger id, outcome) pair inside a batch submission."""

    ledger_id: int
    outcome: Outcome

    def to_api(self) -> dict[str, int]:
        return {"ledger_id": self.ledger_id, "outcome": int(self.outcome)}


class BatchReceipt(BaseModel):
    """Ledger acknowledgement of a batch submission."""

    tx_id: str
    settled: list[int] = Field(default_factory=list)
    skipped: list[int] = Field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> BatchReceipt:
        return cls(
            tx_id=str(data.get("tx_id", "")),
            settled=[int(i) for i in data.get("settled", [])],
            skipped=[int(i) for i in data.get("skipped", [])],
        )


class LedgerEvent(BaseModel):
    """Ledger-side view of one event."""

    ledger_id: int
    status: LedgerStatus
    outcome: Outcome | None = None
    cancel_reason: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> LedgerEvent:
        outcome = data.get("outcome")
        return cls(
            ledger_id=int(data["ledger_id"]),
            status=LedgerStatus(str(data.get("status", "open")).lower()),
            outcome=Outcome(int(outcome)) if outcome else None,
            cancel_reason=data.get("cancel_reason"),
        )
