"""Email provider error classification.

Providers raise EmailProviderError (or let httpx transport errors bubble);
EmailDeliveryService calls classify_provider_error to decide whether to retry.

Error classes:
- E_EMAIL_INVALID_CREDENTIALS: Authentication failure (401/403); never retried
- E_EMAIL_INVALID_REQUEST: Provider rejected the message (4xx); never retried
- E_EMAIL_VALIDATION: Rejected locally before any network call; never retried
- E_EMAIL_RATE_LIMIT: 429; retryable after retry_after seconds
- E_EMAIL_TIMEOUT: Request timed out; retryable
- E_EMAIL_PROVIDER_DOWN: 5xx, network error or anything unrecognised; retryable
"""

from enum import Enum
from typing import TYPE_CHECKING

from deadswitch.logging import get_logger

if TYPE_CHECKING:
    from deadswitch.services.email.types import RateLimitInfo

logger = get_logger(__name__)

DEFAULT_RETRY_AFTER_S = 60

NON_RETRYABLE_MESSAGES = ("invalid api key", "authentication failed")


class EmailErrorClass(str, Enum):
    """Normalized email delivery error classifications."""

    INVALID_CREDENTIALS = "E_EMAIL_INVALID_CREDENTIALS"
    INVALID_REQUEST = "E_EMAIL_INVALID_REQUEST"
    VALIDATION = "E_EMAIL_VALIDATION"
    RATE_LIMIT = "E_EMAIL_RATE_LIMIT"
    TIMEOUT = "E_EMAIL_TIMEOUT"
    PROVIDER_DOWN = "E_EMAIL_PROVIDER_DOWN"


RETRYABLE_ERROR_CLASSES = frozenset(
    {EmailErrorClass.RATE_LIMIT, EmailErrorClass.TIMEOUT, EmailErrorClass.PROVIDER_DOWN}
)


def is_retryable(error_class: EmailErrorClass) -> bool:
    return error_class in RETRYABLE_ERROR_CLASSES


class EmailProviderError(Exception):
    """Raised by providers when a send is not accepted.

    Attributes:
        message: Human-readable error message
        status_code: HTTP status from the provider (if any)
        json_body: Parsed provider error body (if any)
        retry_after: Seconds to wait before retrying (rate limits)
        rate_limit: Quota metadata (rate limits)
        kind: Pre-classified error class, for providers without HTTP status codes
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        json_body: dict | None = None,
        retry_after: int | None = None,
        rate_limit: "RateLimitInfo | None" = None,
        kind: EmailErrorClass | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.json_body = json_body
        self.retry_after = retry_after
        self.rate_limit = rate_limit
        self.kind = kind
        super().__init__(message)


def classify_provider_error(
    provider: str,
    status_code: int | None,
    json_body: dict | None,
    exception: Exception | None,
) -> EmailErrorClass:
    """Classify a provider failure into a normalized error class.

    Args:
        provider: Provider name ("sendgrid", "mock")
        status_code: HTTP status code (if available)
        json_body: Parsed JSON error response (if available)
        exception: The exception that was raised (if any)

    Returns:
        The EmailErrorClass for this failure.
    """
    if isinstance(exception, EmailProviderError) and exception.kind is not None:
        return exception.kind

    # Transport failures carry no status code
    if exception is not None and status_code is None:
        exception_type = type(exception).__name__
        if "Timeout" in exception_type or "timeout" in str(exception).lower():
            return EmailErrorClass.TIMEOUT
        if "Network" in exception_type or "Connect" in exception_type:
            return EmailErrorClass.PROVIDER_DOWN

    message = str(exception).lower() if exception is not None else ""
    if any(marker in message for marker in NON_RETRYABLE_MESSAGES):
        return EmailErrorClass.INVALID_CREDENTIALS

    if status_code is None:
        return EmailErrorClass.PROVIDER_DOWN

    if status_code in (401, 403):
        return EmailErrorClass.INVALID_CREDENTIALS

    if status_code == 429:
        return EmailErrorClass.RATE_LIMIT

    if status_code == 408:
        return EmailErrorClass.TIMEOUT

    if status_code >= 500:
        return EmailErrorClass.PROVIDER_DOWN

    if 400 <= status_code < 500:
        return EmailErrorClass.INVALID_REQUEST

    logger.warning(
        "unclassified_email_provider_error", provider=provider, status_code=status_code
    )
    return EmailErrorClass.PROVIDER_DOWN
