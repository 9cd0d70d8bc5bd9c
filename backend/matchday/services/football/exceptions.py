class FootballAPIError(Exception):
    """Base exception for Outcome Source errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class FootballAuthError(FootballAPIError):
    """API key rejected."""

    pass


class FootballRateLimitError(FootballAPIError):
    """Rate limit still exceeded after retries."""

    pass


class FootballNotFoundError(FootballAPIError):
    """Match or competition not found."""

    pass
