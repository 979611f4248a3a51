"""In-memory email provider for local development and tests.

Accepted messages are kept in memory; nothing leaves the process. Failure,
rate-limit and latency behaviour can be switched on through TestControls.
"""

import threading
import time
import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from deadswitch.services.email.errors import EmailErrorClass, EmailProviderError
from deadswitch.services.email.provider import EmailProvider, TestControls
from deadswitch.services.email.types import EmailData, ProviderReceipt, RateLimitInfo

MOCK_RATE_LIMIT = 100


class MockEmailProvider(EmailProvider, TestControls):
    """Thread-safe in-memory provider."""

    def __init__(self, sleep: Callable[[float], None] = time.sleep):
        self._sleep = sleep
        self._lock = threading.Lock()
        self._sent: list[EmailData] = []
        self._attempts = 0
        self._fail_enabled = False
        self._fail_message = "Simulated email failure"
        self._fail_kind = EmailErrorClass.PROVIDER_DOWN
        self._fail_remaining: int | None = None
        self._rate_limited = False
        self._rate_limit_remaining: int | None = None
        self._retry_after = 60
        self._delay_ms = 0

    @property
    def name(self) -> str:
        return "mock"

    def send(self, data: EmailData) -> ProviderReceipt:
        if self._delay_ms:
            self._sleep(self._delay_ms / 1000)

        with self._lock:
            self._attempts += 1

            if self._rate_limited:
                if self._rate_limit_remaining is not None:
                    self._rate_limit_remaining -= 1
                    if self._rate_limit_remaining <= 0:
                        self._rate_limited = False
                raise EmailProviderError(
                    "Rate limit exceeded",
                    status_code=429,
                    retry_after=self._retry_after,
                    rate_limit=RateLimitInfo(
                        limit=MOCK_RATE_LIMIT,
                        remaining=0,
                        reset_time=datetime.now(UTC) + timedelta(seconds=self._retry_after),
                    ),
                    kind=EmailErrorClass.RATE_LIMIT,
                )

            if self._fail_enabled:
                if self._fail_remaining is not None:
                    self._fail_remaining -= 1
                    if self._fail_remaining <= 0:
                        self._fail_enabled = False
                raise EmailProviderError(self._fail_message, kind=self._fail_kind)

            self._sent.append(data)

        return ProviderReceipt(
            message_id=f"mock-{uuid.uuid4()}",
            tracking_enabled=data.track_delivery,
        )

    # TestControls

    def sent_emails(self) -> list[EmailData]:
        with self._lock:
            return list(self._sent)

    def clear_sent_emails(self) -> None:
        with self._lock:
            self._sent.clear()

    def simulate_failure(
        self,
        enabled: bool,
        message: str = "Simulated email failure",
        kind: EmailErrorClass = EmailErrorClass.PROVIDER_DOWN,
        fail_times: int | None = None,
    ) -> None:
        with self._lock:
            self._fail_enabled = enabled
            self._fail_message = message
            self._fail_kind = kind
            self._fail_remaining = fail_times

    def simulate_rate_limit(
        self, enabled: bool, retry_after: int = 60, times: int | None = None
    ) -> None:
        with self._lock:
            self._rate_limited = enabled
            self._retry_after = retry_after
            self._rate_limit_remaining = times

    def simulate_delay(self, delay_ms: int) -> None:
        self._delay_ms = max(delay_ms, 0)

    def attempt_count(self) -> int:
        with self._lock:
            return self._attempts

    def reset(self) -> None:
        with self._lock:
            self._sent.clear()
            self._attempts = 0
            self._fail_enabled = False
            self._fail_remaining = None
            self._rate_limited = False
            self._rate_limit_remaining = None
            self._delay_ms = 0
