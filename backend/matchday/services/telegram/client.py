"""Posts settlement announcements to the match channel through the Bot API."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from telegram import Bot, Message
from telegram.error import BadRequest, Forbidden, InvalidToken, RetryAfter
from telegram.error import TelegramError as BotAPIError

from .config import MESSAGE_LIMIT, TelegramClientConfig
from .exceptions import TelegramAuthError, TelegramConfigError
from .models import NotificationResult

logger = logging.getLogger(__name__)


def split_message(text: str, limit: int = MESSAGE_LIMIT) -> list[str]:
    """Break an announcement into Bot API sized parts on line boundaries."""
    if len(text) <= limit:
        return [text]

    parts: list[str] = []
    current = ""
    for line in text.splitlines(keepends=True):
        while len(line) > limit:
            if current:
                parts.append(current)
                current = ""
            parts.append(line[:limit])
            line = line[limit:]
        if len(current) + len(line) > limit:
            parts.append(current)
            current = ""
        current += line
    if current:
        parts.append(current)
    return [p.rstrip("\n") for p in parts if p.strip()]


def _seconds(value: int | float | timedelta) -> float:
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


class TelegramClient:
    """Channel poster used by the announcer.

    Flood-control waits and network errors are retried within the configured
    budget; a bot that was removed from the channel or a malformed message is
    not. Delivery problems are reported in the result, never raised.
    """

    def __init__(
        self,
        bot_token: str = "",
        chat_id: str = "",
        config: TelegramClientConfig | None = None,
        bot: Bot | None = None,
    ):
        if not bot_token and bot is None:
            raise TelegramConfigError("bot_token is required for announcements")
        if not chat_id:
            raise TelegramConfigError("chat_id is required for announcements")

        self.chat_id = chat_id
        self.config = config or TelegramClientConfig()
        self._token = bot_token
        self._bot: Bot | None = bot
        self._owns_bot = bot is None

    async def __aenter__(self) -> TelegramClient:
        if self._bot is not None:
            return self
        bot = Bot(token=self._token)
        try:
            await bot.initialize()
        except (InvalidToken, BotAPIError) as e:
            raise TelegramAuthError(f"Announcement bot rejected: {e}") from e
        self._bot = bot
        logger.info(f"Announcing to {self.chat_id} as @{bot.username}")
        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: Exception | None,
        exc_tb: Any,
    ) -> None:
        if self._bot is not None and self._owns_bot:
            await self._bot.shutdown()
            self._bot = None

    @property
    def bot(self) -> Bot:
        if self._bot is None:
            raise RuntimeError("TelegramClient must be used as async context manager")
        return self._bot

    async def send_alert(self, message: str) -> NotificationResult:
        """Post one announcement, split into several messages if it is too long."""
        parts = split_message(message, self.config.max_message_length)
        first_id: int | None = None
        attempts = 0

        for index, part in enumerate(parts, start=1):
            sent, used, error = await self._deliver(part)
            attempts = max(attempts, used)
            if sent is None:
                logger.warning(
                    f"Announcement part {index}/{len(parts)} to {self.chat_id} dropped: {error}"
                )
                return NotificationResult(
                    success=False,
                    recipient=self.chat_id,
                    attempts=attempts,
                    parts=index - 1,
                    message_id=first_id,
                    error=error,
                )
            if first_id is None:
                first_id = sent.message_id

        logger.info(f"Announcement posted to {self.chat_id} (message_id: {first_id})")
        return NotificationResult(
            success=True,
            recipient=self.chat_id,
            attempts=attempts,
            parts=len(parts),
            message_id=first_id,
            delivered_at=datetime.now(timezone.utc),
        )

    async def _deliver(self, text: str) -> tuple[Message | None, int, str | None]:
        retry = self.config.retry
        error: str | None = None

        for attempt in range(retry.max_attempts):
            try:
                sent = await self.bot.send_message(
                    chat_id=self.chat_id,
                    text=text,
                    parse_mode=self.config.parse_mode,
                )
                return sent, attempt + 1, None
            except (Forbidden, BadRequest, InvalidToken) as e:
                return None, attempt + 1, e.message
            except RetryAfter as e:
                error = e.message
                delay = _seconds(e.retry_after)
            except BotAPIError as e:
                error = e.message
                delay = retry.delay_for(attempt)
            except Exception as e:
                error = str(e) or type(e).__name__
                delay = retry.delay_for(attempt)

            if attempt + 1 < retry.max_attempts:
                logger.warning(
                    f"Telegram send failed (attempt {attempt + 1}/{retry.max_attempts}), "
                    f"retrying in {delay:.1f}s: {error}"
                )
                await asyncio.sleep(delay)

        return None, retry.max_attempts, error
