"""Job-control configuration loaded from environment variables."""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class PlatformEnv(str, Enum):
    DEV = "dev"
    STAGING = "staging"
    PROD = "prod"


class Settings(BaseSettings):
    """Application settings loaded from environment variables with JOBCTL_ prefix."""

    model_config = SettingsConfigDict(
        env_prefix="JOBCTL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    env: PlatformEnv = PlatformEnv.DEV
    debug: bool = False

    # Ledger / analytics store
    database_url: str = "sqlite+aiosqlite:///.jobctl/ledger.db"
    database_pool_size: int = 5
    database_max_overflow: int = 5

    # Job definitions
    jobs_dir: Path = Path("jobs")

    # Alerting
    alert_url: str | None = None
    alert_timeout_seconds: float = Field(default=5.0, gt=0.0)
    alert_max_attempts: int = Field(default=1, ge=1)

    # Logging
    log_dir: Path = Path(".jobctl/logs")
    log_retention_days: int = Field(default=7, ge=1)
    structured_logging: bool = False

    # Compute engine
    spark_submit_path: str = "spark-submit"
    spark_home: Path | None = None

    # Pre-conditions
    connect_timeout_seconds: float = Field(default=5.0, gt=0.0)

    @field_validator("alert_url", mode="before")
    @classmethod
    def blank_alert_url_is_none(cls, v: str | None) -> str | None:
        if v is None or not str(v).strip():
            return None
        return str(v).strip()

    def is_alerting_configured(self) -> bool:
        return self.alert_url is not None


def load_settings(**overrides: object) -> Settings:
    """Load settings from environment, with optional overrides for testing."""
    settings = Settings(**overrides)  # type: ignore[arg-type]

    if settings.debug:
        logger.info("Loaded settings for environment: %s", settings.env.value)

    return settings
