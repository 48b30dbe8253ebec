"""Application configuration."""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from library_search.constants import (
    AGGREGATOR_BASE_URL,
    CACHE_TTL,
    DEFAULT_CACHE_DIR,
    DEFAULT_REGION,
    DEFAULT_TIMEOUT,
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="LIBRARY_SEARCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Aggregator
    aggregator_base_url: str = AGGREGATOR_BASE_URL
    region: str = DEFAULT_REGION
    request_timeout_seconds: float = DEFAULT_TIMEOUT

    # Sessions
    session_ceiling_seconds: float | None = None
    reuse_completed_sessions: bool = True

    # Query cache
    cache_dir: Path | None = DEFAULT_CACHE_DIR
    cache_ttl_seconds: int = CACHE_TTL

    # App Settings
    log_level: str = "INFO"
    live_tests: bool = False


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def configure_logging(settings: Settings | None = None) -> None:
    """Configure root logging from settings."""
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
