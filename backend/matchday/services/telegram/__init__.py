"""Telegram announcement service."""

from .client import TelegramClient
from .config import TelegramClientConfig
from .exceptions import TelegramAuthError, TelegramConfigError, TelegramError
from .models import NotificationResult

__all__ = [
    "TelegramClient",
    "TelegramClientConfig",
    "NotificationResult",
    "TelegramError",
    "TelegramAuthError",
    "TelegramConfigError",
]
