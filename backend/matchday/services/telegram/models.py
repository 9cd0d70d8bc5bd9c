"""Announcement delivery result."""

from datetime import datetime

from pydantic import BaseModel


class NotificationResult(BaseModel):
    """What happened to one announcement after all send attempts."""

    success: bool
    recipient: str
    attempts: int = 1
    parts: int = 1
    message_id: int | None = None
    delivered_at: datetime | None = None
    error: str | None = None

    @property
    def retried(self) -> bool:
        return self.attempts > 1

    def __str__(self) -> str:
        if self.success:
            return f"Delivered to {self.recipient} as #{self.message_id} after {self.attempts} attempt(s)"
        return f"Undelivered to {self.recipient}: {self.error}"
