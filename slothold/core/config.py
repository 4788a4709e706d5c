"""
Application configuration using pydantic-settings.
All config is loaded from environment variables with sensible defaults.
"""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "Slot Hold Booking API"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Booking backend (PostgREST-style RPC endpoint)
    BOOKING_BACKEND_URL: str = "http://localhost:54321"
    BOOKING_BACKEND_API_KEY: str = ""
    BACKEND_TIMEOUT_SECONDS: float = 10.0

    # Slot holds
    LOCK_DURATION_MINUTES: int = 10
    COUNTDOWN_INTERVAL_SECONDS: float = 1.0
    MAX_BOOKING_QUANTITY: int = 10
    HEALTH_CHECK_CACHE_SECONDS: int = 60  # 1 minute
    SESSION_IDLE_SECONDS: int = 1800  # abandoned sessions are evicted after 30 minutes

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_CACHE_TTL: int = 15  # slot listings go stale quickly
    REDIS_ENABLED: bool = True

    model_config = {
        "env_file": ".env",
        "case_sensitive": True,
    }


@lru_cache()
def get_settings() -> Settings:
    return Settings()
