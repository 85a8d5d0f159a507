# backend/carshare/core/config.py
"""
Application settings for the carshare booking and ledger backend.

All booking, late-return, payment and withdrawal policy values live here so
handlers never hard-code them. Values come from the environment and an
optional ``backend/.env`` file.
"""

from decimal import Decimal
import logging
import os
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).parent.parent.parent / ".env"  # Goes up to backend/.env
    logger.debug("[CONFIG] Looking for .env at: %s (exists=%s)", env_path, env_path.exists())
    load_dotenv(env_path)


class Settings(BaseSettings):
    environment: Literal["development", "production", "test"] = Field(
        default="development",
        description="Deployment environment name",
    )

    # Database
    database_url: str = Field(
        default="sqlite:///./carshare.db",
        description="SQLAlchemy database URL",
    )
    database_echo: bool = False

    # Redis / Celery
    redis_url: Optional[str] = Field(
        default=None,
        description="Redis URL for booking locks and idempotency cache (disabled when empty)",
    )
    celery_broker_url: str = "redis://localhost:6379/0"
    celery_result_backend: Optional[str] = None

    # Booking policy
    platform_fee_rate: Decimal = Field(
        default=Decimal("0.10"),
        ge=Decimal("0"),
        lt=Decimal("1"),
        description="Fraction of the base price charged as platform fee",
    )
    max_booking_days: int = Field(default=30, ge=1)
    booking_min_lead_minutes: int = Field(
        default=0,
        ge=0,
        description="Minimum minutes between now and booking start",
    )

    # Return policy
    late_return_grace_period_hours: Decimal = Decimal("3")
    late_return_day_threshold: Decimal = Field(
        default=Decimal("0.25"),
        description="Fraction of a day of overtime before excess days are billed",
    )
    late_return_penalty_multiplier: Decimal = Decimal("1.2")
    early_return_refund_rate: Decimal = Field(
        default=Decimal("0.5"),
        ge=Decimal("0"),
        le=Decimal("1"),
        description="Share of the booking total refunded when the car comes back early",
    )
    early_return_platform_share: Decimal = Field(
        default=Decimal("0.1"),
        ge=Decimal("0"),
        le=Decimal("1"),
        description="Part of an early-return refund funded by the platform fee",
    )
    overdue_pre_cancellation_hours: int = 6

    # Payment gateway (PayOS)
    payos_client_id: SecretStr = Field(default=SecretStr(""))
    payos_api_key: SecretStr = Field(default=SecretStr(""))
    payos_checksum_key: SecretStr = Field(default=SecretStr(""))
    payos_base_url: str = "https://api-merchant.payos.vn"
    payos_timeout_seconds: float = Field(default=10.0, gt=0)
    payos_fake: Optional[bool] = Field(
        default=None,
        description="Use the in-memory gateway (defaults to true outside production)",
    )
    payment_link_ttl_minutes: int = Field(default=15, ge=1)
    payment_return_url: str = "http://localhost:3000/payments/success"
    payment_cancel_url: str = "http://localhost:3000/payments/cancel"
    payment_reconcile_after_minutes: int = Field(default=20, ge=1)

    # Compensation
    compensation_due_days: int = Field(default=5, ge=1)

    # Withdrawals
    withdrawal_min_amount: Decimal = Decimal("500000")
    withdrawal_max_amount: Decimal = Decimal("100000000")

    # Sensitive field encryption (urlsafe base64, 32 bytes decoded)
    field_encryption_key: Optional[str] = None

    idempotency_ttl_seconds: int = 86400
    booking_lock_ttl_seconds: int = 60
    sentry_dsn: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("redis_url", "sentry_dsn", "field_encryption_key", mode="before")
    @classmethod
    def _blank_to_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @model_validator(mode="after")
    def _default_payos_fake(self) -> "Settings":
        """Enable the in-memory gateway by default outside production."""

        if self.payos_fake is None:
            self.payos_fake = self.environment != "production"
        return self

    @model_validator(mode="after")
    def _require_production_secrets(self) -> "Settings":
        if self.environment != "production":
            return self
        if not self.field_encryption_key:
            raise ValueError("FIELD_ENCRYPTION_KEY must be configured in production")
        if not self.payos_fake and not self.payos_checksum_key.get_secret_value():
            raise ValueError("PAYOS_CHECKSUM_KEY must be configured in production")
        return self

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


settings = Settings()
logger.info(
    "[CONFIG] environment=%s payos_fake=%s platform_fee_rate=%s",
    settings.environment,
    settings.payos_fake,
    settings.platform_fee_rate,
)
