"""Application configuration."""

from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_parse_none_str="null",
    )

    # Application
    app_name: str = Field(default="Clinic Admission API", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")
    api_v1_prefix: str = Field(default="/api/v1", alias="API_V1_PREFIX")

    # Server
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")
    reload: bool = Field(default=False, alias="RELOAD")

    # Database
    database_url: str = Field(..., alias="DATABASE_URL")

    # Redis (optional; only required for the redis lock backend)
    redis_host: str | None = Field(default=None, alias="REDIS_HOST")
    redis_port: int = Field(default=6379, alias="REDIS_PORT")
    redis_username: str = Field(default="default", alias="REDIS_USERNAME")
    redis_password: str = Field(default="", alias="REDIS_PASSWORD")
    redis_decode_responses: bool = Field(default=True, alias="REDIS_DECODE_RESPONSES")

    # JWT (tokens are issued by the external auth service)
    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(default=30, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    # CORS
    cors_origins_str: str = Field(
        default="http://localhost:3000",
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS origins as a list."""
        if isinstance(self.cors_origins_str, str):
            return [origin.strip() for origin in self.cors_origins_str.split(",") if origin.strip()]
        return [self.cors_origins_str]

    # Clinic time
    clinic_timezone: str = Field(default="America/Mexico_City", alias="CLINIC_TIMEZONE")

    # Admission windows
    check_in_opens_before_minutes: int = Field(
        default=30, ge=0, alias="CHECK_IN_OPENS_BEFORE_MINUTES"
    )
    check_in_closes_after_minutes: int = Field(
        default=15, ge=0, alias="CHECK_IN_CLOSES_AFTER_MINUTES"
    )
    no_show_after_minutes: int = Field(default=15, ge=0, alias="NO_SHOW_AFTER_MINUTES")

    # Reschedule target rules
    schedule_rules_enabled: bool = Field(default=True, alias="SCHEDULE_RULES_ENABLED")
    clinic_open_hour: int = Field(default=9, ge=0, le=23, alias="CLINIC_OPEN_HOUR")
    clinic_close_hour: int = Field(default=15, ge=1, le=24, alias="CLINIC_CLOSE_HOUR")
    lunch_start_hour: int = Field(default=12, ge=0, le=23, alias="LUNCH_START_HOUR")
    lunch_end_hour: int = Field(default=13, ge=0, le=24, alias="LUNCH_END_HOUR")
    slot_minutes: int = Field(default=30, ge=1, le=60, alias="SLOT_MINUTES")
    max_advance_days: int = Field(default=60, ge=1, alias="MAX_ADVANCE_DAYS")
    # Python weekday numbers, Monday=0
    clinic_work_days_str: str = Field(default="0,1,2,3,4,5", alias="CLINIC_WORK_DAYS")

    @property
    def clinic_work_days(self) -> frozenset[int]:
        """Get clinic work days as a set of weekday numbers."""
        return frozenset(
            int(day.strip()) for day in self.clinic_work_days_str.split(",") if day.strip()
        )

    # Per-appointment locking
    lock_backend: str = Field(default="local", alias="LOCK_BACKEND")
    lock_timeout_seconds: float = Field(default=5.0, gt=0, alias="LOCK_TIMEOUT_SECONDS")
    lock_ttl_seconds: float = Field(default=30.0, gt=0, alias="LOCK_TTL_SECONDS")

    # Lets callers pass an explicit "now" (tests, demos); keep off in production
    allow_clock_override: bool = Field(default=False, alias="ALLOW_CLOCK_OVERRIDE")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")

    @field_validator("clinic_timezone")
    @classmethod
    def validate_clinic_timezone(cls, v: str) -> str:
        """Reject timezone identifiers unknown to the IANA database."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown IANA timezone: {v}") from e
        return v

    @field_validator("lock_backend")
    @classmethod
    def validate_lock_backend(cls, v: str) -> str:
        """Validate lock backend name."""
        backend = v.strip().lower()
        if backend not in {"local", "redis"}:
            raise ValueError("LOCK_BACKEND must be 'local' or 'redis'")
        return backend

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()  # type: ignore[call-arg]


# Global settings instance
settings = get_settings()
