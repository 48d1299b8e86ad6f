"""Centralized settings management for the eventfusion pipeline."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from urllib.parse import unquote, urlparse

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings powered by pydantic-settings.

    Loads configuration from environment variables and a .env file located
    in the current working directory.
    """

    # -------------------------------------------------------------------------
    # ENVIRONMENT
    # -------------------------------------------------------------------------
    ENV: str = "development"
    DEBUG: bool = False

    # -------------------------------------------------------------------------
    # LOGGING
    # -------------------------------------------------------------------------
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # -------------------------------------------------------------------------
    # DATABASE
    # -------------------------------------------------------------------------
    DATABASE_URL: str | None = None

    # -------------------------------------------------------------------------
    # SOURCE API KEYS
    # -------------------------------------------------------------------------
    EVENTBRITE_API_KEY: SecretStr | None = None
    TICKETMASTER_API_KEY: SecretStr | None = None
    YELP_API_KEY: SecretStr | None = None
    MEETUP_API_KEY: SecretStr | None = None

    # -------------------------------------------------------------------------
    # TASK SPAWNER
    # -------------------------------------------------------------------------
    SPAWNER_MAX_WORKERS: int = Field(default=5, ge=1)
    SPAWNER_TIMEOUT_MS: int = Field(default=30_000, gt=0)
    SPAWNER_RETRY_ATTEMPTS: int = Field(default=3, ge=0)
    SPAWNER_RETRY_DELAY_MS: int = Field(default=1_000, ge=0)

    # -------------------------------------------------------------------------
    # NORMALIZATION & DEDUPLICATION
    # -------------------------------------------------------------------------
    DEFAULT_TIMEZONE: str | None = None
    BASE_DIR: Path = Path(__file__).resolve().parent
    DEDUP_CONFIG_PATH: Path = BASE_DIR / "dedup.yaml"

    # -------------------------------------------------------------------------
    # CONFIGURATION
    # -------------------------------------------------------------------------
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        # Allow extra fields in .env but ignore them in the model
        extra="ignore",
    )

    def get_psycopg2_params(self) -> dict:
        """
        Parse DATABASE_URL into psycopg2-compatible connection parameters.

        Returns
        -------
        dict
            psycopg2 connection arguments (host, port, dbname, user, password).

        Raises
        ------
        ValueError
            If DATABASE_URL is not configured.
        """
        if not self.DATABASE_URL:
            raise ValueError("DATABASE_URL is not configured")

        url = urlparse(self.DATABASE_URL)
        return {
            "host": url.hostname,
            "port": url.port,
            "dbname": url.path.lstrip("/") or None,
            "user": unquote(url.username) if url.username else None,
            "password": unquote(url.password) if url.password else None,
        }


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns
    -------
    Settings
        The singleton settings instance.
    """
    return Settings()
