"""Application configuration management."""
from functools import lru_cache
from typing import List, Optional

import pytz
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

DEFAULT_WORKING_HOURS = [8, 9, 10, 11, 14, 15, 16, 17, 18, 19]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Telegram
    bot_token: str = Field(..., alias="BOT_TOKEN")
    coach_chat_id: Optional[str] = Field(default=None, alias="COACH_TELEGRAM_ID")

    # Google OAuth & Calendar API
    google_client_id: str = Field(..., alias="GOOGLE_CLIENT_ID")
    google_client_secret: str = Field(..., alias="GOOGLE_CLIENT_SECRET")
    google_redirect_uri: str = Field(
        default="http://localhost:3000/auth/callback", alias="GOOGLE_REDIRECT_URI"
    )
    calendar_id: str = Field(default="primary", alias="CALENDAR_ID")
    timezone: str = Field(default="Europe/Kiev", alias="TIMEZONE")

    # Booking rules
    working_hours: List[int] = Field(default_factory=lambda: list(DEFAULT_WORKING_HOURS), alias="WORKING_HOURS")
    excluded_weekday: Optional[int] = Field(default=6, alias="EXCLUDED_WEEKDAY")
    session_duration_minutes: int = Field(default=60, alias="SESSION_DURATION_MINUTES")
    days_ahead: int = Field(default=14, alias="DAYS_AHEAD")

    # SQLite store
    sqlite_db_path: str = Field(default="./data/tennis_bookings.db", alias="SQLITE_DB_PATH")
    sqlite_backup_path: str = Field(default="./data/backups/", alias="SQLITE_BACKUP_PATH")
    sqlite_timeout_ms: int = Field(default=30000, alias="SQLITE_TIMEOUT")
    db_log_queries: bool = Field(default=False, alias="DB_LOG_QUERIES")

    # Maintenance
    scheduler_enabled: bool = Field(default=True, alias="SCHEDULER_ENABLED")
    db_auto_backup: bool = Field(default=False, alias="DB_AUTO_BACKUP")
    db_backup_interval_hours: int = Field(default=24, alias="DB_BACKUP_INTERVAL")
    db_retention_days: int = Field(default=30, alias="DB_RETENTION_DAYS")
    db_health_check_interval_hours: int = Field(default=6, alias="DB_HEALTH_CHECK_INTERVAL")
    completion_sweep_minutes: int = Field(default=60, alias="COMPLETION_SWEEP_MINUTES")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=True, alias="LOG_JSON")

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        try:
            pytz.timezone(value)
        except pytz.UnknownTimeZoneError:
            raise ValueError(f"Unknown timezone: {value}")
        return value

    @field_validator("working_hours")
    @classmethod
    def validate_working_hours(cls, value: List[int]) -> List[int]:
        """Working hours must be distinct hours of the day; stored sorted."""
        if not value:
            raise ValueError("WORKING_HOURS must contain at least one hour.")
        if any(hour < 0 or hour > 23 for hour in value):
            raise ValueError("WORKING_HOURS values must be between 0 and 23.")
        if len(set(value)) != len(value):
            raise ValueError("WORKING_HOURS must not contain duplicates.")
        return sorted(value)

    @field_validator("excluded_weekday")
    @classmethod
    def validate_excluded_weekday(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and not 0 <= value <= 6:
            raise ValueError("EXCLUDED_WEEKDAY must be between 0 (Monday) and 6 (Sunday).")
        return value

    @field_validator(
        "session_duration_minutes",
        "days_ahead",
        "sqlite_timeout_ms",
        "db_backup_interval_hours",
        "db_retention_days",
        "db_health_check_interval_hours",
        "completion_sweep_minutes",
    )
    @classmethod
    def validate_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("Interval and duration settings must be positive.")
        return value

    @property
    def sqlite_timeout_seconds(self) -> float:
        return self.sqlite_timeout_ms / 1000

    @property
    def tz(self):
        return pytz.timezone(self.timezone)

    class Config:
        """Pydantic configuration."""
        env_file = ".env"
        case_sensitive = False
        populate_by_name = True
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """Load settings once per process; raises if required variables are missing."""
    return Settings()
