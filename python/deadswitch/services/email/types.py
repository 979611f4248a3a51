"""Shared type definitions for the email layer.

- EmailData: One outgoing message (provider-agnostic)
- RateLimitInfo: Quota metadata reported by a provider on 429
- ProviderReceipt: What a provider returns for an accepted message
- EmailResult: Outcome of EmailDeliveryService.send, including retries
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

from deadswitch.services.email.errors import EmailErrorClass

Priority = Literal["high", "normal", "low"]

HIGH_PRIORITY_HEADERS: dict[str, str] = {
    "X-Priority": "1",
    "X-MSMail-Priority": "High",
    "Importance": "high",
}

LOW_PRIORITY_HEADERS: dict[str, str] = {
    "X-Priority": "5",
    "X-MSMail-Priority": "Low",
    "Importance": "low",
}


@dataclass(frozen=True)
class EmailData:
    """A single outgoing email.

    Attributes:
        to: Recipient address
        subject: Subject line (must be non-empty)
        html: HTML body
        text: Plain-text body (at least one of html/text must be non-empty)
        from_address: Overrides the provider's default sender
        reply_to: Optional Reply-To address
        priority: Mapped to X-Priority/Importance headers by the provider
        headers: Extra headers; these win over priority headers
        track_delivery: Ask the provider for open/click tracking
    """

    to: str
    subject: str
    html: str
    text: str | None = None
    from_address: str | None = None
    reply_to: str | None = None
    priority: Priority = "normal"
    headers: dict[str, str] = field(default_factory=dict)
    track_delivery: bool = False

    def effective_headers(self) -> dict[str, str]:
        """Priority headers merged with explicit headers."""
        merged: dict[str, str] = {}
        if self.priority == "high":
            merged.update(HIGH_PRIORITY_HEADERS)
        elif self.priority == "low":
            merged.update(LOW_PRIORITY_HEADERS)
        merged.update(self.headers)
        return merged


@dataclass(frozen=True)
class RateLimitInfo:
    limit: int | None
    remaining: int | None
    reset_time: datetime | None


@dataclass(frozen=True)
class ProviderReceipt:
    """Accepted-message details returned by a provider."""

    message_id: str | None
    tracking_enabled: bool = False


@dataclass(frozen=True)
class EmailResult:
    """Outcome of a send.

    attempts counts provider calls: 0 when validation rejected the message
    before any network attempt.
    """

    success: bool
    attempts: int
    provider: str
    message_id: str | None = None
    error: str | None = None
    error_class: EmailErrorClass | None = None
    retryable: bool = False
    retry_after: int | None = None
    rate_limit: RateLimitInfo | None = None
    tracking_requested: bool = False
    tracking_enabled: bool = False
