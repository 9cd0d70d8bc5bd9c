from pydantic import BaseModel, Field

from matchday.services.retry import RetryPolicy


class FootballConfig(BaseModel):
    """Configuration for the football-data.org client."""

    base_url: str = "https://api.football-data.org/v4"
    supported_competitions: list[int] = Field(
        default_factory=lambda: [2021, 2014, 2002, 2019, 2015, 2001]
    )
    timeout_seconds: float = 30.0
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
