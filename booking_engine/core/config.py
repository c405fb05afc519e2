from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # Basic settings
    PROJECT_NAME: str = "Booking Engine"
    VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    API_V1_STR: str = "/api/v1"

    # Database
    DATABASE_URL: str

    # Redis (enables the shared schedule lock across workers)
    REDIS_URL: Optional[str] = None

    # CORS
    ALLOWED_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:8080"]

    @field_validator("ALLOWED_ORIGINS", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v):
        if isinstance(v, str):
            return [i.strip() for i in v.split(",")]
        return v

    # Celery (appointment events for notification and calendar sync)
    CELERY_BROKER_URL: Optional[str] = None
    CELERY_RESULT_BACKEND: Optional[str] = None
    APPOINTMENT_EVENT_TASK: str = "notifications.appointment_event"
    APPOINTMENT_EVENT_QUEUE: str = "notifications"

    # Scheduling defaults (a business policy may override these)
    EMERGENCY_QUOTA_MIN_FRACTION: float = 0.30
    CANCELLATION_WINDOW_HOURS: int = 24
    DEFAULT_SLOT_DURATION_MINUTES: int = 30

    # Booking transactions
    SCHEDULE_LOCK_TIMEOUT_SECONDS: float = 10.0
    SCHEDULE_LOCK_TTL_SECONDS: int = 30
    BOOKING_TRANSACTION_TIMEOUT_SECONDS: float = 15.0
    BOOKING_MAX_RETRIES: int = 3
    BOOKING_RETRY_BACKOFF_SECONDS: float = 0.05

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    model_config = {"env_file": ".env", "case_sensitive": True}


# Global settings instance
settings = Settings()
