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

    app_name: str = "Leave Ledger"
    app_version: str = "0.1.0"
    debug: bool = False
    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "postgresql+asyncpg://leave_ledger:leave_ledger@db:5432/leave_ledger"
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:8000"]

    # Shared secret the scheduler sends in the X-Cron-Secret header.
    cron_secret: str | None = None
    # Timezone used to resolve "today" for scheduled grant runs and calendars without one.
    operational_timezone: str = "Asia/Tokyo"
    grant_interval_seconds: int = 86400
    # Row-lock wait bound on PostgreSQL; a timeout surfaces as a concurrency conflict.
    db_lock_timeout_ms: int = 5000
    log_level: str = "INFO"


_settings: Settings | None = None


def get_settings() -> Settings:
    """Return cached settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
