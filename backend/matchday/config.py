"""Configuration management using Pydantic Settings."""

import logging
from functools import lru_cache
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from matchday.services.football.config import FootballConfig
from matchday.services.ledger.config import LedgerConfig

logger = logging.getLogger(__name__)


class ResolutionConfig(BaseModel):
    """Completion prediction and result polling policy."""

    typical_duration_minutes: int = 95
    recheck_offsets_minutes: list[int] = Field(default_factory=lambda: [0, 5, 10, 20])
    recheck_interval_minutes: int = 10  # after the last offset
    hard_cutoff_hours: float = 3.0  # measured from kickoff
    lookback_hours: int = 48
    backlog_retry_minutes: int = 10

    @field_validator("recheck_offsets_minutes")
    @classmethod
    def validate_offsets(cls, v: list[int]) -> list[int]:
        if not v:
            raise ValueError("recheck_offsets_minutes cannot be empty")
        if any(b <= a for a, b in zip(v, v[1:])) or v[0] < 0:
            raise ValueError("recheck_offsets_minutes must be non-negative and increasing")
        return v


class CancellationConfig(BaseModel):
    """Stale (postponed) event voiding policy."""

    grace_period_minutes: int = 60
    sweep_interval_minutes: int = 15
    reason: str = "Match postponed - auto-cancelled"


class SchedulerConfig(BaseModel):
    """Fixed-interval job settings."""

    ingestion_hour_utc: int = 6
    ingest_on_startup: bool = True
    close_check_minutes: int = 1
    pending_cleanup_minutes: int = 5
    pending_bet_timeout_minutes: int = 5


class TelegramConfig(BaseModel):
    """Announcement toggles."""

    send_result_alerts: bool = True
    send_cancel_alerts: bool = True
    send_close_alerts: bool = True


class ApiConfig(BaseModel):
    """Admin HTTP API."""

    host: str = "127.0.0.1"
    port: int = 8000


class Settings(BaseSettings):
    """Main configuration class."""

    # Paths
    data_dir: Path = Path("data")
    database_url: str = ""

    # API keys and credentials
    football_api_key: str = ""
    ledger_api_key: str = ""
    ledger_private_key: str = ""
    ledger_private_key_path: str = ""  # Alternative: path to PEM file
    admin_api_token: str = ""
    logfire_token: str = ""

    # Telegram
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""

    # Nested configuration sections
    resolution: ResolutionConfig = Field(default_factory=ResolutionConfig)
    cancellation: CancellationConfig = Field(default_factory=CancellationConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    football: FootballConfig = Field(default_factory=FootballConfig)
    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("data_dir", mode="after")
    @classmethod
    def resolve_data_dir(cls, v: Path) -> Path:
        """Resolve data directory to absolute path."""
        return v.resolve()

    @property
    def resolved_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        return f"sqlite:///{self.data_dir / 'matchday.db'}"

    def get_ledger_private_key(self) -> str:
        """Get the manager key from either direct value or file path."""
        if self.ledger_private_key:
            return self.ledger_private_key

        if self.ledger_private_key_path:
            key_path = Path(self.ledger_private_key_path)
            if key_path.is_file():
                return key_path.read_text()
            if key_path.exists():
                logger.warning(f"Ledger key path is not a file: {key_path}")
            else:
                logger.warning(f"Ledger key file not found: {key_path}")

        return ""

    def load_yaml_config(self) -> None:
        """Load and merge YAML configuration."""
        config_path = self.data_dir / "config.yaml"

        if not config_path.exists():
            logger.warning(
                f"Config file not found: {config_path}. "
                "Using defaults. Run 'python -m matchday init' to create it."
            )
            return

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                yaml_config = yaml.safe_load(f)

            if not yaml_config:
                logger.warning(f"Empty config file: {config_path}")
                return

            for section_name in [
                "resolution",
                "cancellation",
                "scheduler",
                "football",
                "ledger",
                "telegram",
                "api",
            ]:
                if section_name in yaml_config:
                    section = getattr(self, section_name)
                    section_dict = section.model_dump()
                    section_dict.update(yaml_config[section_name])
                    setattr(self, section_name, section.__class__(**section_dict))

            logger.info(f"Loaded configuration from {config_path}")

        except yaml.YAMLError as e:
            logger.error(f"Failed to parse YAML config: {e}")
            raise


@lru_cache()
def get_settings() -> Settings:
    """Get singleton Settings instance."""
    settings = Settings()
    settings.load_yaml_config()
    return settings
