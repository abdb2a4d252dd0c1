# backend/sessionbook/core/config.py
"""
Runtime configuration for the SessionBook booking engine.

Settings are read from the environment (``SESSIONBOOK_`` prefix) and an
optional ``.env`` file. Entry points (the FastAPI app factory and the Celery
app factory) construct one ``Settings`` instance and pass it down explicitly;
nothing in the engine reads configuration from module-level state.
"""

import logging
import os
from typing import Literal

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import pytz

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    # Database
    database_url: str = Field(
        default="sqlite+pysqlite:///./sessionbook.db",
        description="SQLAlchemy database URL (PostgreSQL in production)",
    )
    database_echo: bool = False
    database_pool_size: int = Field(default=5, ge=1)
    database_max_overflow: int = Field(default=5, ge=0)

    # Scheduling
    platform_timezone: str = Field(
        default="Africa/Lagos",
        description="Timezone in which session dates and wall-clock times are expressed",
    )
    default_session_duration_minutes: int = Field(
        default=60,
        ge=15,
        le=240,
        description="Session length used when a date exception does not specify one",
    )

    # Booking engine
    pending_booking_timeout_minutes: int = Field(
        default=15,
        ge=1,
        description="Age after which pending_payment bookings and credit reservations are expired",
    )
    credit_reserve_max_attempts: int = Field(
        default=5,
        ge=1,
        description="Compare-and-set retries when concurrent reservations race for the same credit",
    )
    housekeeping_interval_seconds: int = Field(
        default=300,
        ge=30,
        description="How often the Celery beat schedule runs the booking housekeeping sweep",
    )

    # Payments
    payment_provider: Literal["fake", "stripe"] = Field(
        default="fake",
        description="Payment gateway implementation (fake for local/dev/test)",
    )
    default_currency: str = Field(default="ngn", min_length=3, max_length=3)
    stripe_secret_key: SecretStr = Field(default=SecretStr(""))
    stripe_webhook_secret: SecretStr = Field(default=SecretStr(""))
    fake_payment_secret: SecretStr = Field(
        default=SecretStr("dev-payment-secret"),
        description="HMAC secret used to sign callbacks from the fake payment gateway",
    )
    checkout_success_url: str = "http://localhost:3000/dashboard/credits?status=success"
    checkout_cancel_url: str = "http://localhost:3000/dashboard/credits?status=cancelled"

    # Workers
    celery_broker_url: str = Field(
        default_factory=lambda: os.getenv("REDIS_URL") or "redis://localhost:6379/0",
    )
    celery_result_backend: str | None = None

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="SESSIONBOOK_",
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("platform_timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        try:
            pytz.timezone(value)
        except pytz.UnknownTimeZoneError as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value

    @field_validator("default_currency", mode="before")
    @classmethod
    def _normalize_currency(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @model_validator(mode="after")
    def _require_stripe_secrets(self) -> "Settings":
        if self.payment_provider == "stripe":
            if not self.stripe_secret_key.get_secret_value():
                raise ValueError("SESSIONBOOK_STRIPE_SECRET_KEY is required when payment_provider=stripe")
            if not self.stripe_webhook_secret.get_secret_value():
                raise ValueError(
                    "SESSIONBOOK_STRIPE_WEBHOOK_SECRET is required when payment_provider=stripe"
                )
        return self

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


def load_settings(**overrides: object) -> Settings:
    """Build settings for a process entry point, applying explicit overrides."""
    settings = Settings(**overrides)
    logger.info(
        "[CONFIG] payment_provider=%s timezone=%s pending_timeout=%smin",
        settings.payment_provider,
        settings.platform_timezone,
        settings.pending_booking_timeout_minutes,
    )
    return settings
