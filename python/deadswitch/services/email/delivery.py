"""Email delivery with validation, bounded retries and error classification.

EmailDeliveryService.send never raises for delivery problems; every outcome is
an EmailResult.

Retry policy:
- Validation failures: no provider call, attempts=0, not retryable
- Invalid credentials / rejected request: stop after the failing attempt
- Timeout / provider down: up to max_attempts total, sleeping
  base_delay * 2^(attempt-1) + jitter between attempts
- Rate limit: same attempt budget, sleeping the provider's retry_after
  (capped at max_rate_limit_wait_s) instead of the backoff delay; once the
  budget is spent the result is retryable and carries retry_after
"""

import random
import re
import time
from collections.abc import Callable

import httpx

from deadswitch.config import Settings
from deadswitch.logging import get_logger
from deadswitch.services.email.errors import (
    DEFAULT_RETRY_AFTER_S,
    EmailErrorClass,
    EmailProviderError,
    classify_provider_error,
    is_retryable,
)
from deadswitch.services.email.provider import EmailProvider
from deadswitch.services.email.types import EmailData, EmailResult

logger = get_logger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MAX_JITTER_MS = 1000


def is_valid_email(address: str | None) -> bool:
    return bool(address) and bool(EMAIL_PATTERN.match(address))


def validate_email_data(data: EmailData) -> list[str]:
    """Return validation errors for a message; empty when it may be sent."""
    errors = []
    if not data.to or not data.to.strip():
        errors.append("Missing recipient email address")
    elif not is_valid_email(data.to.strip()):
        errors.append("Invalid email format")
    if not data.subject or not data.subject.strip():
        errors.append("Missing email subject")
    if not (data.html and data.html.strip()) and not (data.text and data.text.strip()):
        errors.append("Missing email content")
    return errors


class EmailDeliveryService:
    """Provider-agnostic send with retries.

    Args:
        provider: The EmailProvider to deliver through.
        max_attempts: Total provider calls allowed per send.
        base_delay_ms: First backoff delay; doubles per attempt.
        max_rate_limit_wait_s: Longest single wait honoured for a provider
            retry_after before trying again.
        sleep: Blocking sleep function (injected as a no-op in tests).
        jitter_ms: Returns the random jitter to add to each delay.
    """

    def __init__(
        self,
        provider: EmailProvider,
        *,
        max_attempts: int = 3,
        base_delay_ms: int = 1000,
        max_rate_limit_wait_s: float = 30,
        sleep: Callable[[float], None] = time.sleep,
        jitter_ms: Callable[[], float] | None = None,
    ):
        self.provider = provider
        self._max_attempts = max(max_attempts, 1)
        self._base_delay_ms = base_delay_ms
        self._max_rate_limit_wait_s = max_rate_limit_wait_s
        self._sleep = sleep
        self._jitter_ms = jitter_ms or (lambda: random.uniform(0, MAX_JITTER_MS))

    @classmethod
    def from_settings(
        cls,
        provider: EmailProvider,
        settings: Settings,
        sleep: Callable[[float], None] = time.sleep,
    ) -> "EmailDeliveryService":
        return cls(
            provider,
            max_attempts=settings.email_max_attempts,
            base_delay_ms=settings.email_retry_base_delay_ms,
            max_rate_limit_wait_s=settings.email_max_rate_limit_wait_s,
            sleep=sleep,
        )

    @property
    def provider_name(self) -> str:
        return self.provider.name

    def backoff_delay_ms(self, attempt: int) -> float:
        """Delay before the attempt following `attempt` (1-based)."""
        return self._base_delay_ms * (2 ** (attempt - 1)) + self._jitter_ms()

    def rate_limit_wait_s(self, retry_after: float) -> float:
        return min(retry_after, self._max_rate_limit_wait_s)

    def send(self, data: EmailData) -> EmailResult:
        provider = self.provider.name

        config_problems = self.provider.validate_config()
        if config_problems:
            logger.error("email_provider_misconfigured", provider=provider, problems=config_problems)
            return EmailResult(
                success=False,
                attempts=0,
                provider=provider,
                error=f"Email provider not configured: {'; '.join(config_problems)}",
                error_class=EmailErrorClass.INVALID_CREDENTIALS,
                retryable=False,
                tracking_requested=data.track_delivery,
            )

        validation_errors = validate_email_data(data)
        if validation_errors:
            logger.warning("email_validation_failed", provider=provider, errors=validation_errors)
            return EmailResult(
                success=False,
                attempts=0,
                provider=provider,
                error="; ".join(validation_errors),
                error_class=EmailErrorClass.VALIDATION,
                retryable=False,
                tracking_requested=data.track_delivery,
            )

        last_error = "Unknown error"
        last_class = EmailErrorClass.PROVIDER_DOWN
        retry_after = None
        rate_limit = None

        for attempt in range(1, self._max_attempts + 1):
            try:
                receipt = self.provider.send(data)
            except (EmailProviderError, httpx.HTTPError) as exc:
                status_code = getattr(exc, "status_code", None)
                json_body = getattr(exc, "json_body", None)
                error_class = classify_provider_error(provider, status_code, json_body, exc)
                last_error = str(exc) or type(exc).__name__
                last_class = error_class

                logger.warning(
                    "email_send_attempt_failed",
                    provider=provider,
                    attempt=attempt,
                    error_class=error_class.value,
                    status_code=status_code,
                )

                if error_class == EmailErrorClass.RATE_LIMIT:
                    last_error = "Rate limit exceeded"
                    retry_after = getattr(exc, "retry_after", None) or DEFAULT_RETRY_AFTER_S
                    rate_limit = getattr(exc, "rate_limit", None)
                    if attempt < self._max_attempts:
                        self._sleep(self.rate_limit_wait_s(retry_after))
                    continue

                if not is_retryable(error_class):
                    return EmailResult(
                        success=False,
                        attempts=attempt,
                        provider=provider,
                        error=last_error,
                        error_class=error_class,
                        retryable=False,
                        tracking_requested=data.track_delivery,
                    )

                if attempt < self._max_attempts:
                    self._sleep(self.backoff_delay_ms(attempt) / 1000)
                continue

            logger.info(
                "email_sent",
                provider=provider,
                attempts=attempt,
                message_id=receipt.message_id,
                priority=data.priority,
            )
            return EmailResult(
                success=True,
                attempts=attempt,
                provider=provider,
                message_id=receipt.message_id,
                tracking_requested=data.track_delivery,
                tracking_enabled=receipt.tracking_enabled,
            )

        logger.error(
            "email_send_exhausted",
            provider=provider,
            attempts=self._max_attempts,
            error_class=last_class.value,
        )
        return EmailResult(
            success=False,
            attempts=self._max_attempts,
            provider=provider,
            error=last_error,
            error_class=last_class,
            retryable=True,
            retry_after=retry_after if last_class == EmailErrorClass.RATE_LIMIT else None,
            rate_limit=rate_limit if last_class == EmailErrorClass.RATE_LIMIT else None,
            tracking_requested=data.track_delivery,
        )
