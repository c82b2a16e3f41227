"""
Configuration Management

Uses Pydantic Settings for environment-based configuration.
Loads from .env file automatically.
"""

from typing import Optional
from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Stores
    DATABASE_URL: Optional[str] = None
    REDIS_URL: str = "redis://localhost:6379/0"

    # Application Settings
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Analytics cache
    ANALYTICS_CACHE_TTL_SECONDS: int = 1800

    # Background processing
    WORKERS_ENABLED: bool = True
    ANALYTICS_WORKER_CONCURRENCY: int = 3
    ANALYTICS_QUEUE_NAME: str = "analytics"
    MUTATION_REFRESH_DELAY_SECONDS: float = 2.0
    JOB_ATTEMPTS: int = 3
    JOB_BACKOFF_SECONDS: float = 2.0
    JOB_LOCK_SECONDS: float = 30.0

    # Recurring refresh
    RECURRING_CRON: str = "0 * * * *"
    RECURRING_FALLBACK_HOURS: int = 1
    ACTIVE_WINDOW_HOURS: int = 24
    ACTIVE_SET_EXPIRY_HOURS: int = 48
    RECURRING_STAGGER_SECONDS: float = 0.1

    # Ledger
    AUTO_LOCK_AFTER_MINUTES: int = 5
    AUTO_LOCK_INTERVAL_SECONDS: int = 60

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra fields in .env file
        case_sensitive = False  # Allow both UPPERCASE and lowercase


@lru_cache
def get_settings() -> Settings:
    """Get or create cached settings instance."""
    return Settings()
