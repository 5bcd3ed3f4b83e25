from dataclasses import dataclass
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "postgresql+asyncpg://localhost:5432/agenda"

    @field_validator('DATABASE_URL', mode='before')
    @classmethod
    def convert_database_url(cls, v: str) -> str:
        """Convert postgresql:// to postgresql+asyncpg:// for async support."""
        if v and v.startswith('postgresql://'):
            return v.replace('postgresql://', 'postgresql+asyncpg://', 1)
        return v

    # Auth
    SECRET_KEY: str = "development-secret-key-change-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # CORS / public URLs
    FRONTEND_URL: str = "http://localhost:3000"
    SITE_URL: str | None = None

    # Scheduling
    DEFAULT_TIMEZONE: str = "America/Sao_Paulo"
    DEFAULT_BUFFER_MIN: int = 15
    DEFAULT_RESCHEDULE_HOURS: float = 24
    COMPLETE_GRACE_HOURS: float = 3
    PENDING_HOLD_GRACE_HOURS: float = 2
    MAINTENANCE_BATCH_SIZE: int = 200
    MAINTENANCE_SCHEDULER_ENABLED: bool = False
    MAINTENANCE_INTERVAL_MINUTES: int = 15
    CRON_SECRET: str | None = None

    @field_validator('DEFAULT_BUFFER_MIN', mode='before')
    @classmethod
    def default_buffer_not_negative(cls, v):
        """Negative or unparsable buffers fall back to 15 minutes."""
        try:
            value = int(v)
        except (TypeError, ValueError):
            return 15
        return value if value >= 0 else 15

    # Payments
    PAYMENT_PROVIDER: str = "stripe"
    PAYMENT_CURRENCY: str = "brl"
    PAYMENT_PROVIDER_TIMEOUT_SECONDS: float = 15.0
    STRIPE_SECRET_KEY: str | None = None
    STRIPE_WEBHOOK_SECRET: str | None = None
    PAGARME_SECRET_KEY: str | None = None
    PAGARME_WEBHOOK_SECRET: str | None = None
    PAGARME_API_URL: str = "https://api.pagar.me/core/v5"

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def sqlalchemy_echo(self) -> bool:
        # Never echo SQL in production, it leaks parameters into logs
        return self.DEBUG and not self.is_production

    @property
    def DOCS_ENABLED(self) -> bool:
        return not self.is_production

    @property
    def public_base_url(self) -> str:
        return (self.SITE_URL or self.FRONTEND_URL).rstrip("/")

    class Config:
        env_file = ".env"
        case_sensitive = True


@dataclass(frozen=True)
class SchedulingConfig:
    """Explicit knobs for the scheduling and lifecycle operations.

    Built from Settings at the edges (routes, scheduled jobs) and passed into
    every operation so tests can vary it without touching the environment.
    """

    timezone: str = "America/Sao_Paulo"
    default_buffer_min: int = 15
    lead_time_hours: float = 24
    complete_grace_hours: float = 3
    pending_hold_grace_hours: float = 2
    batch_size: int = 200
    provider_timeout_seconds: float = 15.0

    @classmethod
    def from_settings(cls, s: Settings) -> "SchedulingConfig":
        return cls(
            timezone=s.DEFAULT_TIMEZONE,
            default_buffer_min=s.DEFAULT_BUFFER_MIN,
            lead_time_hours=s.DEFAULT_RESCHEDULE_HOURS,
            complete_grace_hours=s.COMPLETE_GRACE_HOURS,
            pending_hold_grace_hours=s.PENDING_HOLD_GRACE_HOURS,
            batch_size=s.MAINTENANCE_BATCH_SIZE,
            provider_timeout_seconds=s.PAYMENT_PROVIDER_TIMEOUT_SECONDS,
        )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
