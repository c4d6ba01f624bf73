from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")
    db_echo: bool = Field(False, alias="DB_ECHO")
    db_pool_recycle_seconds: int = Field(300, alias="DB_POOL_RECYCLE_SECONDS")

    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(15, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    log_level: str = Field("INFO", alias="LOG_LEVEL")
    cors_origins: List[str] = Field(["*"], alias="CORS_ORIGINS")

    # Calendar / cascade lookups must fail fast instead of blocking a request.
    lookup_timeout_seconds: float = Field(3.0, alias="LOOKUP_TIMEOUT_SECONDS")
    # When a date sits inside a BREAK week and also under a holiday, report BREAK.
    calendar_break_over_holiday: bool = Field(True, alias="CALENDAR_BREAK_OVER_HOLIDAY")

    aggregation_max_attempts: int = Field(4, alias="AGGREGATION_MAX_ATTEMPTS")
    aggregation_backoff_min_seconds: float = Field(0.5, alias="AGGREGATION_BACKOFF_MIN_SECONDS")
    aggregation_backoff_max_seconds: float = Field(8.0, alias="AGGREGATION_BACKOFF_MAX_SECONDS")

    bulk_max_course_assignments: int = Field(10, alias="BULK_MAX_COURSE_ASSIGNMENTS")
    bulk_max_justifications: int = Field(50, alias="BULK_MAX_JUSTIFICATIONS")

    auto_approval_sweep_enabled: bool = Field(False, alias="AUTO_APPROVAL_SWEEP_ENABLED")
    auto_approval_sweep_interval_minutes: int = Field(60, alias="AUTO_APPROVAL_SWEEP_INTERVAL_MINUTES")

    notification_webhook_url: Optional[str] = Field(None, alias="NOTIFICATION_WEBHOOK_URL")
    notification_timeout_seconds: float = Field(3.0, alias="NOTIFICATION_TIMEOUT_SECONDS")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
