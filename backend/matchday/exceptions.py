"""Engine-level exceptions."""


class SettlementError(Exception):
    """Base exception for settlement engine failures."""


class InvalidOutcomeError(SettlementError):
    """Outcome data that cannot be turned into a result. Needs manual review."""

    def __init__(self, message: str, event_id: int | None = None):
        super().__init__(message)
        self.event_id = event_id
