from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Optional
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./paneltrack.db"

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # App Settings
    APP_NAME: str = "Panel Tracking Backend"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Redis Cache Settings
    REDIS_URL: Optional[str] = None  # e.g., "redis://localhost:6379/0"
    CACHE_ENABLED: bool = True
    MO_PROGRESS_CACHE_TTL: int = 30  # seconds; floor displays tolerate near-real-time data

    # Alert Settings
    ALERT_DEDUP_WINDOW_SECONDS: int = 300
    ALERT_RETENTION_DAYS: int = 30
    ALERT_PANELS_REMAINING_THRESHOLD: int = 50
    ALERT_LOW_PROGRESS_PERCENT: float = 25.0
    ALERT_HIGH_FAILURE_RATE_PERCENT: float = 10.0
    ALERT_BOTTLENECK_QUEUE_THRESHOLD: int = 5
    ALERT_SLOW_STATION_MINUTES: float = 10.0

    # Closure Readiness Settings
    CLOSURE_MAX_FAILURE_RATE_PERCENT: float = 15.0
    CLOSURE_MIN_READINESS_PERCENT: float = 80.0

    # Scheduler Settings
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_TIMEZONE: str = "UTC"
    MO_MONITOR_INTERVAL_SECONDS: int = 30
    ALERT_CLEANUP_INTERVAL_MINUTES: int = 60

    # Production Rules
    PRODUCTION_YEAR_MIN: int = 2020
    PRODUCTION_YEAR_LOOKAHEAD: int = 5
    REWORK_REENTRY_POLICY: str = "FAILED_STATION"  # FAILED_STATION | LINE_START
    REQUIRE_FAIL_CRITERIA: bool = False

    @field_validator('REWORK_REENTRY_POLICY', mode='before')
    @classmethod
    def normalize_rework_policy(cls, v):
        if isinstance(v, str):
            v = v.strip().upper()
            if v not in ("FAILED_STATION", "LINE_START"):
                raise ValueError(f"Unknown rework re-entry policy: {v}")
        return v

    @field_validator('LOG_LEVEL', mode='before')
    @classmethod
    def normalize_log_level(cls, v):
        return v.upper() if isinstance(v, str) else v

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
