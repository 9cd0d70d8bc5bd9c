"""Telegram client config."""

from pydantic import BaseModel, Field

from matchday.services.retry import RetryPolicy

MESSAGE_LIMIT = 4096


class TelegramClientConfig(BaseModel):
    """Delivery settings for the match channel."""

    parse_mode: str = "HTML"
    max_message_length: int = MESSAGE_LIMIT
    retry: RetryPolicy = Field(
        default_factory=lambda: RetryPolicy(
            max_retries=1, base_delay_seconds=2.0, max_delay_seconds=30.0
        )
    )
