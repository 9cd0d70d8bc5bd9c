"""Capped exponential back-off shared by the HTTP clients."""

from __future__ import annotations

from pydantic import BaseModel

RETRYABLE_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})


class RetryPolicy(BaseModel):
    """Bounded retry schedule for transient failures."""

    max_retries: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 10.0

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, attempt: int) -> float:
        """Delay before retrying after the given zero-based failed attempt."""
        return min(self.base_delay_seconds * (2 ** attempt), self.max_delay_seconds)

    @staticmethod
    def is_retryable_status(status_code: int) -> bool:
        return status_code in RETRYABLE_STATUS_CODES
