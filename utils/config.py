"""
Configuration Utility - Environment Variables Management

Centralized configuration loading from .env files using pydantic-settings.
Type-safe access to all environment variables with validation.

Usage:
    from utils.config import settings

    cons_id = settings.BPJS_CONS_ID
    max_attempts = settings.MAX_ATTEMPTS
"""

from datetime import datetime
from functools import lru_cache
from zoneinfo import ZoneInfo

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # BPJS Verification API
    BPJS_CONS_ID: str = Field(default="")
    BPJS_SECRET_KEY: str = Field(default="")
    BPJS_USER_KEY: str = Field(default="")
    BPJS_VALIDATE_URL: str = Field(
        default="https://apijkn.bpjs-kesehatan.go.id/wsihs/api/rs/validate"
    )
    BPJS_TIMEOUT: int = Field(default=30)

    # Job Pipeline
    MAX_ATTEMPTS: int = Field(default=3, ge=1)
    BETWEEN_JOBS_DELAY: float = Field(default=30.0, ge=0)

    # Scheduler Configuration
    TIMEZONE: str = Field(default="Asia/Makassar")
    WEEKDAY_CRON: str = Field(default="*/10 16-17 * * mon-fri")
    SATURDAY_CRON: str = Field(default="*/10 12-13 * * sat")
    CACHE_CLEANUP_CRON: str = Field(default="0 0 * * *")

    # Holiday Calendar
    HOLIDAY_API_URL: str = Field(
        default="https://raw.githubusercontent.com/guangrei/APIHariLibur_V2/main/holidays.json"
    )
    HOLIDAY_API_TIMEOUT: int = Field(default=30)

    # Browser Automation
    HEADLESS: bool | None = Field(default=None)
    AGREE_TIMEOUT: int = Field(default=30)
    AGREE_SETTLE_SECONDS: float = Field(default=5.0)

    # SIMRS Database (MySQL)
    SIMRS_DB_HOST: str = Field(default="localhost")
    SIMRS_DB_PORT: int = Field(default=3306)
    SIMRS_DB_USER: str = Field(default="")
    SIMRS_DB_PASSWORD: str = Field(default="")
    SIMRS_DB_NAME: str = Field(default="sik")

    # Telegram Notifications
    TELEGRAM_BOT_TOKEN: str = Field(default="")
    TELEGRAM_CHAT_ID: str = Field(default="")
    TELEGRAM_API_BASE: str = Field(default="https://api.telegram.org")
    TELEGRAM_TIMEOUT: int = Field(default=15)

    # Database Configuration
    SQLITE_PATH: str = Field(default="data/icare.sqlite3")

    # Dashboard API Configuration
    API_PORT: int = Field(default=3000)
    API_HOST: str = Field(default="0.0.0.0")

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json")
    LOG_TO_FILE: bool = Field(default=False)
    LOG_DIR: str = Field(default="logs")

    # Application Metadata
    ENVIRONMENT: str = Field(default="production")
    APP_NAME: str = Field(default="icare")
    APP_VERSION: str = Field(default="0.1.0")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"

    @property
    def headless(self) -> bool:
        """Run Chrome headless unless HEADLESS says otherwise; defaults to production mode."""
        if self.HEADLESS is not None:
            return self.HEADLESS
        return self.ENVIRONMENT == "production"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Singleton Settings instance
    """
    return Settings()


# Global settings instance
settings = get_settings()


def local_now() -> datetime:
    """Current wall-clock time in the hospital's timezone (settings.TIMEZONE)."""
    return datetime.now(ZoneInfo(settings.TIMEZONE))
