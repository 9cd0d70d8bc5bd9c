from .client import FootballClient
from .config import FootballConfig
from .exceptions import (
    FootballAPIError,
    FootballAuthError,
    FootballNotFoundError,
    FootballRateLimitError,
)
from .models import FixtureSnapshot, normalize_status

__all__ = [
    "FootballClient",
    "FootballConfig",
    "FootballAPIError",
    "FootballAuthError",
    "FootballNotFoundError",
    "FootballRateLimitError",
    "FixtureSnapshot",
    "normalize_status",
]
