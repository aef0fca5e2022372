"""
Environment configuration — single source of truth for all settings.

Uses pydantic-settings for type-safe config with .env file support.
All values have sensible defaults for local development.

Usage:
    from skycast.app.core.config import settings
    print(settings.DATABASE_URL)
"""

from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application-wide settings loaded from environment variables or .env file.

    Precedence: env var > .env file > default value
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── Application ──
    APP_NAME: str = "Skycast"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development | staging | production
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"  # DEBUG | INFO | WARNING | ERROR | CRITICAL

    # ── Server ──
    HOST: str = "0.0.0.0"
    PORT: int = 3000
    RELOAD: bool = True  # auto-reload on file changes (dev only)

    # ── CORS ──
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:8081",  # Expo dev server
    ]
    CORS_ALLOW_ALL: bool = True  # False in production

    # ── Database ──
    DATABASE_URL: str = "sqlite+aiosqlite:///data/skycast.db"
    DATABASE_ECHO: bool = False  # log SQL queries

    # ── Upstream weather API (OpenWeatherMap) ──
    OPENWEATHERMAP_API_KEY: str = ""
    DEFAULT_CITY: str = "London"
    DEFAULT_UNITS: str = "metric"  # metric | imperial | standard
    HTTP_TIMEOUT_SECONDS: float = 30.0
    GEO_CACHE_TTL_SECONDS: int = 86_400  # geocoding results live 24 h
    CACHE_CLEANUP_INTERVAL_SECONDS: int = 3_600

    # ── Scheduler ──
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_JOBS_FILE: Optional[str] = None  # JSON {"jobs": [...]}
    JOB_STORE_BACKEND: str = "file"  # file | database
    JOB_STORAGE_PATH: str = "data/jobs.json"
    SCHEDULER_MAX_CONCURRENT_TICKS: int = 1  # per job id; 1 = skip if running
    SCHEDULER_MISFIRE_GRACE_SECONDS: int = 60

    # ── Devices ──
    DEVICE_STORAGE_PATH: str = "data/devices.json"
    DEVICE_API_KEY: Optional[str] = None  # None = device routes are open

    # ── Notifications ──
    NOTIFY_DELIVERY_POLICY: str = "any"  # any | all
    EXPO_ENABLED: bool = True
    NTFY_URL: Optional[str] = None
    NTFY_TOPIC: Optional[str] = None
    NTFY_TOKEN: Optional[str] = None
    NTFY_USERNAME: Optional[str] = None
    NTFY_PASSWORD: Optional[str] = None
    GOTIFY_URL: Optional[str] = None
    GOTIFY_TOKEN: Optional[str] = None

    # ── History & backfill ──
    API_DAILY_CALL_LIMIT: int = 1_000  # metered upstream calls per UTC day
    HISTORY_BACKFILL_ENABLED: bool = True
    HISTORY_BACKFILL_CRON: str = "0 0 3 * * *"  # 03:00 UTC daily
    HISTORY_BACKFILL_MAX_YEARS: int = 1
    HISTORY_BACKFILL_FALLBACK_CITIES: List[str] = []
    HISTORY_BACKFILL_REQUEST_DELAY_MS: int = 100
    HISTORY_MAX_FETCHES_PER_REQUEST: int = 48
    HISTORY_RETENTION_DAYS: int = 0  # 0 = keep forever

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"

    @property
    def ntfy_configured(self) -> bool:
        return bool(self.NTFY_URL and self.NTFY_TOPIC)

    @property
    def gotify_configured(self) -> bool:
        return bool(self.GOTIFY_URL and self.GOTIFY_TOKEN)


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


settings = get_settings()
