"""
config/settings.py
Application settings loaded from environment variables.
Uses Pydantic BaseSettings for validation and type safety.
"""

from functools import lru_cache
from typing import List
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────
    APP_NAME: str = "Companion Booking Platform"
    APP_ENV: str = "development"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    SECRET_KEY: str

    # ── Server ───────────────────────────────────────────────
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    WORKERS: int = 4

    # ── Database ─────────────────────────────────────────────
    DATABASE_URL: str
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 40
    DATABASE_POOL_TIMEOUT: int = 30

    # ── Redis ────────────────────────────────────────────────
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_CACHE_TTL: int = 300          # 5 minutes

    # ── JWT ──────────────────────────────────────────────────
    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 15

    # ── Celery (outbound domain events) ──────────────────────
    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    EVENTS_QUEUE: str = "notifications"
    EVENTS_TASK_NAME: str = "notifier.handle_event"
    EVENTS_PUBLISH_ENABLED: bool = True

    # ── Frontend ─────────────────────────────────────────────
    FRONTEND_URL: str = "http://localhost:3000"
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:3001"

    # ── Rate Limiting ────────────────────────────────────────
    RATE_LIMIT_UNAUTH_PER_MINUTE: int = 20

    # ── Business Config ──────────────────────────────────────
    PLATFORM_FEE_PERCENT: float = 10.0
    MIN_BOOKING_HOURS: float = 1.0
    MAX_BOOKING_HOURS: float = 12.0
    DEFAULT_HOURLY_RATE: float = 50.0
    BOOKING_LOCK_TTL_SECONDS: int = 30
    BOOKING_LOCK_WAIT_SECONDS: float = 5.0
    SCHEDULE_TIMEZONE: str = "UTC"     # wall clock for booking dates and times

    # ── Dev seed ─────────────────────────────────────────────
    SEED_ADMIN_EMAIL: str = "admin@example.com"

    @field_validator("PLATFORM_FEE_PERCENT")
    @classmethod
    def fee_in_range(cls, v: float) -> float:
        if not 0 <= v <= 100:
            raise ValueError("PLATFORM_FEE_PERCENT must be between 0 and 100")
        return v

    @property
    def allowed_origins_list(self) -> List[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",")]

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance, call this everywhere."""
    return Settings()


settings = get_settings()
