"""
Application configuration using Pydantic Settings.

Loads configuration from environment variables and .env files.
"""

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "Stocky Rewards"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: Literal["local", "development", "staging", "production"] = "local"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite:///./stocky.db"
    DB_ECHO: bool = False

    # Mock price sampler
    PRICE_FETCH_ENABLED: bool = True
    PRICE_FETCH_INTERVAL_MINUTES: int = 60

    # Reporting
    REPORTING_TIMEZONE: str = "Asia/Kolkata"
    HISTORY_DAYS: int = 365

    # CORS
    CORS_ORIGINS: list[str] = ["*"]

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")
