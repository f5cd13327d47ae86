# backend/lessonbook/core/config.py
import logging
import os
from pathlib import Path
from typing import Any, Callable, Literal, Optional, cast

from dotenv import load_dotenv as _real_load_dotenv
from pydantic import Field, SecretStr, ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv = cast(Callable[..., bool], _real_load_dotenv)


def is_running_tests() -> bool:
    """
    Detect if code is running under pytest.

    PYTEST_CURRENT_TEST is set automatically by pytest during test runs, and is
    not expected to be present in production environments.
    """
    return os.getenv("PYTEST_CURRENT_TEST") is not None


logger = logging.getLogger(__name__)

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).parent.parent.parent / ".env"  # Goes up to backend/.env
    logger.debug(f"[CONFIG] Looking for .env at: {env_path}")
    load_dotenv(env_path)


class Settings(BaseSettings):
    environment: Literal["development", "test", "staging", "production"] = Field(
        default="development",
        description="Deployment environment name",
    )

    # Persistence
    database_url: str = Field(
        default="sqlite:///./lessonbook.db",
        description="SQLAlchemy database URL",
    )
    database_echo: bool = Field(default=False, description="Echo SQL statements (debug only)")

    # Redis: Celery broker and optional advisory reservation locks
    redis_url: Optional[str] = Field(
        default=None,
        description="Redis URL; when unset, advisory locks are skipped",
    )
    lock_namespace: str = Field(default="lessonbook", description="Prefix for Redis lock keys")
    reservation_lock_ttl_seconds: int = Field(default=30, ge=1)

    # Scheduling
    school_timezone: str = Field(
        default="Europe/Stockholm",
        description="Timezone that lesson dates and times are expressed in",
    )
    default_resource_id: str = Field(
        default="default",
        description="Resource (car/instructor lane) used when callers do not name one",
    )
    default_supervisor_limit: int = Field(
        default=1,
        ge=0,
        description="Supervisor sub-limit for group sessions that do not specify one",
    )
    reservation_commit_retries: int = Field(
        default=3,
        ge=1,
        description="Attempts to win the slot compare-and-set before reporting SlotUnavailable",
    )

    # Payment holds
    payment_hold_minutes: int = Field(
        default=120,
        ge=1,
        description="How long untrusted payers have to settle an invoice",
    )
    default_currency: str = Field(default="SEK", min_length=3, max_length=3)
    invoice_due_days: int = Field(
        default=14,
        ge=0,
        description="Due date offset for trusted payers (no forced expiry)",
    )
    hold_sweep_interval_seconds: int = Field(default=60, ge=5)
    hold_sweep_batch_size: int = Field(default=200, ge=1)

    # Hosted checkout gateway
    checkout_fake: bool = Field(
        default=True,
        description="Use the in-process fake checkout gateway instead of Stripe",
    )
    stripe_secret_key: Optional[SecretStr] = Field(
        default=None,
        description="Stripe secret key for hosted checkout sessions",
    )
    checkout_success_url: str = Field(
        default="http://localhost:3000/booking/success?invoice={invoice_id}",
    )
    checkout_cancel_url: str = Field(
        default="http://localhost:3000/booking/payment/{invoice_id}",
    )

    # Internal cron endpoint
    cron_secret: SecretStr = Field(
        default=SecretStr(""),
        description="Shared secret required by the internal hold sweep endpoint",
    )

    # Use ConfigDict instead of Config class (Pydantic V2 style)
    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("default_currency")
    @classmethod
    def _normalize_currency(cls, value: str) -> str:
        return value.strip().upper()

    @field_validator("stripe_secret_key")
    @classmethod
    def _require_stripe_key_when_live(
        cls, value: Optional[SecretStr], info: ValidationInfo
    ) -> Optional[SecretStr]:
        """A live checkout gateway needs a key outside development."""
        environment = info.data.get("environment", "development")
        if environment == "production" and value is None:
            logger.warning("STRIPE_SECRET_KEY is not set; hosted checkout will use the fake gateway")
        return value

    @model_validator(mode="after")
    def _force_fake_checkout_without_key(self) -> "Settings":
        if self.stripe_secret_key is None or not self.stripe_secret_key.get_secret_value():
            self.checkout_fake = True
        return self

    def get_database_url(self) -> str:
        """Return the configured database URL."""
        return self.database_url

    def engine_kwargs(self) -> dict[str, Any]:
        """Engine options appropriate for the configured dialect."""
        if self.database_url.startswith("sqlite"):
            return {"connect_args": {"check_same_thread": False, "timeout": 30}}
        return {
            "pool_size": 5,
            "max_overflow": 10,
            "pool_timeout": 5,
            "pool_recycle": 300,
            "pool_pre_ping": True,
        }


settings = Settings()
