"""Email delivery layer.

- Provider interface (EmailProvider) with SendGrid and in-memory implementations
- Error classification and normalization
- EmailDeliveryService: validation, bounded retries, result reporting

Usage:
    from deadswitch.services.email import EmailData, EmailDeliveryService, create_email_provider

    provider = create_email_provider(settings, httpx_client)
    delivery = EmailDeliveryService.from_settings(provider, settings)
    result = delivery.send(EmailData(to="a@example.com", subject="Hi", html="<p>Hi</p>"))

Rules:
- No retries inside providers
- No DB access inside providers
- No logging of message bodies
"""

import httpx

from deadswitch.config import EmailProviderName, Settings
from deadswitch.services.email.delivery import (
    EmailDeliveryService,
    is_valid_email,
    validate_email_data,
)
from deadswitch.services.email.errors import (
    EmailErrorClass,
    EmailProviderError,
    classify_provider_error,
    is_retryable,
)
from deadswitch.services.email.mock_provider import MockEmailProvider
from deadswitch.services.email.provider import EmailProvider, TestControls
from deadswitch.services.email.sendgrid_provider import SendGridProvider
from deadswitch.services.email.types import (
    HIGH_PRIORITY_HEADERS,
    EmailData,
    EmailResult,
    ProviderReceipt,
    RateLimitInfo,
)


def create_email_provider(settings: Settings, client: httpx.Client) -> EmailProvider:
    """Build the provider selected by EMAIL_PROVIDER."""
    if settings.email_provider == EmailProviderName.SENDGRID:
        return SendGridProvider(
            client,
            api_key=settings.sendgrid_api_key,
            sender_email=settings.sendgrid_admin_email,
            sender_name=settings.sendgrid_sender_name,
            timeout_s=settings.email_timeout_s,
        )
    return MockEmailProvider()


__all__ = [
    # Types
    "EmailData",
    "EmailResult",
    "ProviderReceipt",
    "RateLimitInfo",
    "HIGH_PRIORITY_HEADERS",
    # Errors
    "EmailErrorClass",
    "EmailProviderError",
    "classify_provider_error",
    "is_retryable",
    # Providers
    "EmailProvider",
    "TestControls",
    "MockEmailProvider",
    "SendGridProvider",
    "create_email_provider",
    # Delivery
    "EmailDeliveryService",
    "is_valid_email",
    "validate_email_data",
]
