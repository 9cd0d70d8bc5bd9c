from pydantic import BaseModel, Field

from matchday.services.retry import RetryPolicy


class LedgerConfig(BaseModel):
    """Configuration for the settlement ledger client."""

    base_url: str = "https://ledger.matchday.local/api/v1"
    paper_mode: bool = True
    timeout_seconds: float = 30.0
    max_batch_size: int = 50
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
