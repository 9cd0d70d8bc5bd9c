"""Telegram service exceptions."""


class TelegramError(Exception):
    """Base Telegram exception."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TelegramAuthError(TelegramError):
    """Bot token rejected."""

    pass


class TelegramConfigError(TelegramError):
    """Missing token or chat id."""

    pass
