"""
Service configuration.

Every environment variable the service reads is declared here, validated once
at import, and exposed through the module-level ``settings``. The coaching
engine itself never reads ``settings``: the app turns the COACH_* values into
an EngineConfig and hands that in.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from typing import Optional
from dotenv import load_dotenv

load_dotenv()

COOLDOWN_BACKENDS = ("database", "redis", "memory")
LOG_FORMATS = ("json", "text")


class Settings(BaseSettings):
    """Environment-driven settings for the coach service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    # --- Storage ---
    DATABASE_URL: str = Field(default="sqlite:///./tinywins_coach.db")
    DB_POOL_SIZE: int = Field(default=5)  # ignored for SQLite
    DB_MAX_OVERFLOW: int = Field(default=10)
    DB_POOL_RECYCLE: int = Field(default=3600)
    REDIS_URL: str = Field(default="redis://localhost:6379/0")
    # Where "last shown" timestamps live
    COOLDOWN_BACKEND: str = Field(default="database")

    # --- Logging ---
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json")

    # --- Coach cards ---
    COACH_MAX_CARDS: int = Field(default=3, ge=1)
    COACH_MIN_EVENTS_14D: int = Field(default=3, ge=0)
    COACH_COOLDOWN_DAYS: int = Field(default=7, ge=0)
    # Records older than this are pruned on the child's next write
    COACH_COOLDOWN_RETENTION_DAYS: int = Field(default=30, ge=1)
    COACH_RISK_CAP: int = Field(default=1, ge=0)
    COACH_IMPROVEMENT_CAP: int = Field(default=2, ge=0)
    COACH_NEUTRAL_CAP: int = Field(default=1, ge=0)
    COACH_DEFAULT_LOCALE: str = Field(default="en")

    # --- Runtime ---
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=False)
    CORS_ORIGINS: Optional[str] = Field(default=None)  # comma-separated

    @field_validator("COOLDOWN_BACKEND")
    @classmethod
    def _known_backend(cls, value: str) -> str:
        value = value.lower()
        if value not in COOLDOWN_BACKENDS:
            raise ValueError(f"COOLDOWN_BACKEND must be one of {', '.join(COOLDOWN_BACKENDS)}")
        return value

    @field_validator("LOG_FORMAT")
    @classmethod
    def _known_log_format(cls, value: str) -> str:
        value = value.lower()
        if value not in LOG_FORMATS:
            raise ValueError(f"LOG_FORMAT must be one of {', '.join(LOG_FORMATS)}")
        return value


settings = Settings()
