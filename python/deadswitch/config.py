"""Application settings loaded from environment variables.

Environment Configuration:
    DEADSWITCH_ENV: Deployment environment (local | test | staging | prod)
    DATABASE_URL: PostgreSQL connection string (required)
    CRON_SECRET: Shared bearer secret for scheduler endpoints (required in staging/prod)

Email Configuration:
    EMAIL_PROVIDER: "mock" or "sendgrid" (mock is refused in prod)
    SENDGRID_API_KEY / SENDGRID_ADMIN_EMAIL: Required when EMAIL_PROVIDER=sendgrid
    SENDGRID_SENDER_NAME: Display name on outgoing mail
    ADMIN_ALERT_EMAIL: Recipient of delivery-failure notifications

Redis / Celery Configuration:
    REDIS_URL: Redis connection string (required for worker)
    CELERY_BROKER_URL: Celery broker URL (defaults to REDIS_URL)
    CELERY_RESULT_BACKEND: Celery result backend URL (defaults to REDIS_URL)

Settings are read once per process. Services receive the Settings object (or the
values they need) through their constructors and never look at the environment.
"""

from enum import Enum
from functools import lru_cache
from typing import Annotated

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings


class Environment(str, Enum):
    """Valid deployment environments."""

    LOCAL = "local"
    TEST = "test"
    STAGING = "staging"
    PROD = "prod"


class EmailProviderName(str, Enum):
    """Supported email providers."""

    MOCK = "mock"
    SENDGRID = "sendgrid"


class Settings(BaseSettings):
    """Application configuration.

    Validation rules:
    - DATABASE_URL is always required
    - CRON_SECRET is required in staging and prod
    - SENDGRID_API_KEY and SENDGRID_ADMIN_EMAIL are required when EMAIL_PROVIDER=sendgrid
    - EMAIL_PROVIDER=mock is not allowed in prod
    """

    deadswitch_env: Environment = Field(default=Environment.LOCAL, alias="DEADSWITCH_ENV")
    database_url: Annotated[str, Field(alias="DATABASE_URL")]
    cron_secret: str | None = Field(default=None, alias="CRON_SECRET")

    # Email delivery
    email_provider: EmailProviderName = Field(
        default=EmailProviderName.MOCK, alias="EMAIL_PROVIDER"
    )
    sendgrid_api_key: str | None = Field(default=None, alias="SENDGRID_API_KEY")
    sendgrid_admin_email: str | None = Field(default=None, alias="SENDGRID_ADMIN_EMAIL")
    sendgrid_sender_name: str = Field(default="Dead Man's Switch", alias="SENDGRID_SENDER_NAME")
    admin_alert_email: str = Field(default="support@aviat.io", alias="ADMIN_ALERT_EMAIL")
    email_max_attempts: int = Field(default=3, alias="EMAIL_MAX_ATTEMPTS")
    email_retry_base_delay_ms: int = Field(default=1000, alias="EMAIL_RETRY_BASE_DELAY_MS")
    email_max_rate_limit_wait_s: int = Field(default=30, alias="EMAIL_MAX_RATE_LIMIT_WAIT_S")
    email_timeout_s: int = Field(default=30, alias="EMAIL_TIMEOUT_S")

    # Links in outgoing mail
    site_url: str = Field(default="http://localhost:3000", alias="SITE_URL")

    # Server share encryption (base64-encoded 32-byte key)
    server_share_key: str | None = Field(default=None, alias="SERVER_SHARE_KEY")

    # Scheduler
    scheduler_max_workers: int = Field(default=4, alias="SCHEDULER_MAX_WORKERS")
    scheduler_run_timeout_s: int = Field(default=240, alias="SCHEDULER_RUN_TIMEOUT_S")
    scheduler_lookahead_days: int = Field(default=7, alias="SCHEDULER_LOOKAHEAD_DAYS")
    scheduler_claim_ttl_s: int = Field(default=900, alias="SCHEDULER_CLAIM_TTL_S")

    # Failure retry pass
    email_retry_batch_size: int = Field(default=50, alias="EMAIL_RETRY_BATCH_SIZE")

    # Tokens and retention
    check_in_token_ttl_hours: int = Field(default=168, alias="CHECK_IN_TOKEN_TTL_HOURS")
    email_failure_retention_days: int = Field(default=30, alias="EMAIL_FAILURE_RETENTION_DAYS")

    # Redis / Celery settings
    redis_url: str | None = Field(default=None, alias="REDIS_URL")
    celery_broker_url: str | None = Field(default=None, alias="CELERY_BROKER_URL")
    celery_result_backend: str | None = Field(default=None, alias="CELERY_RESULT_BACKEND")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @model_validator(mode="after")
    def validate_required_settings(self) -> "Settings":
        """Ensure environment-dependent settings are consistent."""
        if self.deadswitch_env in (Environment.STAGING, Environment.PROD):
            if not self.cron_secret:
                raise ValueError(
                    f"CRON_SECRET is required for DEADSWITCH_ENV={self.deadswitch_env.value}"
                )

        if self.email_provider == EmailProviderName.SENDGRID:
            missing = []
            if not self.sendgrid_api_key:
                missing.append("SENDGRID_API_KEY")
            if not self.sendgrid_admin_email:
                missing.append("SENDGRID_ADMIN_EMAIL")
            if missing:
                raise ValueError(
                    f"Missing required SendGrid settings: {', '.join(missing)}"
                )
        elif self.deadswitch_env == Environment.PROD:
            raise ValueError("EMAIL_PROVIDER=mock is not allowed for DEADSWITCH_ENV=prod")

        for name in (
            "email_max_attempts",
            "scheduler_max_workers",
            "scheduler_run_timeout_s",
            "scheduler_lookahead_days",
            "scheduler_claim_ttl_s",
            "email_retry_batch_size",
            "check_in_token_ttl_hours",
            "email_failure_retention_days",
        ):
            if getattr(self, name) < 1:
                alias = type(self).model_fields[name].alias
                raise ValueError(f"{alias} must be >= 1")

        return self

    @property
    def normalized_site_url(self) -> str:
        """Return site URL with trailing slash stripped."""
        return self.site_url.rstrip("/")

    @property
    def effective_celery_broker_url(self) -> str | None:
        """Return Celery broker URL, falling back to REDIS_URL if not set."""
        return self.celery_broker_url or self.redis_url

    @property
    def effective_celery_result_backend(self) -> str | None:
        """Return Celery result backend URL, falling back to REDIS_URL if not set."""
        return self.celery_result_backend or self.redis_url


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If required settings are missing or invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache. Useful for testing."""
    get_settings.cache_clear()
