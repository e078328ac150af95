from typing import List, Union
from pydantic import AnyHttpUrl, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    PROJECT_NAME: str = "Clinic Booking"
    API_V1_STR: str = "/api/v1"

    # CORS
    BACKEND_CORS_ORIGINS: List[AnyHttpUrl] = []

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",") if i.strip()]
        elif isinstance(v, (list, str)):
            return v
        raise ValueError(v)

    # Database
    DATABASE_URL: str = "sqlite:///./clinic_booking.db"
    DATABASE_ECHO: bool = False
    DATABASE_POOL_SIZE: int = 10
    DATABASE_MAX_OVERFLOW: int = 20

    @model_validator(mode='after')
    def normalize_db_connection(self) -> 'Settings':
        # Sessions are synchronous, so async drivers are swapped for psycopg2
        if self.DATABASE_URL.startswith("postgresql://"):
            self.DATABASE_URL = self.DATABASE_URL.replace("postgresql://", "postgresql+psycopg2://", 1)
        elif self.DATABASE_URL.startswith("postgresql+asyncpg://"):
            self.DATABASE_URL = self.DATABASE_URL.replace("postgresql+asyncpg://", "postgresql+psycopg2://", 1)
        return self

    # Redis (Celery broker and result backend)
    REDIS_URL: str = "redis://localhost:6379/0"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # Booking rules
    BOOKING_HORIZON_DAYS: int = 30
    PENDING_EXPIRY_HOURS: int = 24
    INITIAL_APPOINTMENT_STATUS: str = "scheduled"
    SLOT_LOCK_TIMEOUT_SECONDS: float = 5.0
    SLOT_RETENTION_DAYS: int = 7
    MAX_NOTES_LENGTH: int = 600

    # Scheduling
    EXPIRY_SWEEP_MINUTE: int = 0
    EVENT_REDELIVERY_BATCH_SIZE: int = 100

    @field_validator("INITIAL_APPOINTMENT_STATUS")
    @classmethod
    def validate_initial_status(cls, v: str) -> str:
        normalized = v.strip().lower()
        if normalized not in {"pending", "scheduled", "confirmed"}:
            raise ValueError("INITIAL_APPOINTMENT_STATUS must be pending, scheduled or confirmed")
        return normalized

    @field_validator("BOOKING_HORIZON_DAYS", "PENDING_EXPIRY_HOURS", "SLOT_RETENTION_DAYS")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    model_config = SettingsConfigDict(case_sensitive=True, env_file=".env", extra='ignore')

settings = Settings()
