"""Configuration management for the print queue."""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="PQ_",
        extra="ignore",
    )

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///data/printqueue.db",
        description="Database connection URL",
    )
    db_echo: bool = Field(default=False, description="Echo SQL statements")

    # Receipts
    receipt_prefix: str = Field(default="3DNTZ", description="Prefix for receipt numbers")
    receipt_max_attempts: int = Field(
        default=5, ge=1, description="Attempts at drawing a unique receipt number"
    )

    # Karma scoring
    karma_base: float = Field(default=100.0, gt=0, description="Score of a user with no print history")
    gap_filler_minutes: int = Field(default=45, gt=0, description="Jobs shorter than this get the bonus")
    gap_filler_bonus: float = Field(default=50.0, ge=0, description="Flat bonus for short jobs")

    # Recalculation
    recalc_max_concurrency: int = Field(
        default=10, ge=1, description="Concurrent score updates during a recalculation"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Log level for the CLI")


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def configure(settings: Settings) -> None:
    """Override global settings."""
    global _settings
    _settings = settings
