"""
Application configuration using pydantic-settings.

Loads configuration from environment variables with sensible defaults.
"""
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database (SQLite for local dev, PostgreSQL for production)
    database_url: str = "sqlite:///./ddsportal.db"

    # Redis (Celery broker and optional cache backend)
    redis_url: str = "redis://localhost:6379/0"

    # Cache
    cache_backend: str = "memory"  # memory | redis
    cache_max_size: Optional[int] = None
    preferences_cache_ttl_seconds: Optional[int] = None  # None = invalidate on write only

    # File Storage
    storage_root: Path = Path("./storage")
    orphaned_file_cleanup_days: int = 30

    # Watermarking
    watermark_max_attempts: int = 3
    watermark_timeout_seconds: int = 120
    watermark_retry_delay_seconds: int = 60
    watermark_font_size: int = 24
    watermark_opacity: float = 0.3

    # Application
    debug: bool = False
    log_level: str = "INFO"
    json_logs: bool = True


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
