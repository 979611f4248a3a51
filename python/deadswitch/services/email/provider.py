"""Email provider interfaces.

EmailProvider is the only interface production code talks to. Rules:
- No retries inside providers
- No DB access
- No logging of message bodies
- Failures are raised (EmailProviderError or httpx transport errors) for the
  delivery service to classify

TestControls is a separate interface implemented only by the in-memory
provider. Tests reach it with an explicit isinstance check; production code
never does.
"""

from abc import ABC, abstractmethod

from deadswitch.services.email.errors import EmailErrorClass
from deadswitch.services.email.types import EmailData, ProviderReceipt


class EmailProvider(ABC):
    """Abstract base class for email providers."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Short provider identifier, e.g. "sendgrid"."""

    @abstractmethod
    def send(self, data: EmailData) -> ProviderReceipt:
        """Make exactly one delivery attempt.

        Returns:
            ProviderReceipt for an accepted message.

        Raises:
            EmailProviderError: Provider rejected the message.
            httpx.TimeoutException: On request timeout.
            httpx.TransportError: On network failure.
        """

    def validate_config(self) -> list[str]:
        """Return configuration problems; empty when the provider is usable."""
        return []


class TestControls(ABC):
    """Test-only controls for the in-memory provider."""

    # Not a test class, despite the name
    __test__ = False

    @abstractmethod
    def sent_emails(self) -> list[EmailData]:
        """Messages accepted so far, oldest first."""

    @abstractmethod
    def clear_sent_emails(self) -> None: ...

    @abstractmethod
    def simulate_failure(
        self,
        enabled: bool,
        message: str = "Simulated email failure",
        kind: EmailErrorClass = EmailErrorClass.PROVIDER_DOWN,
        fail_times: int | None = None,
    ) -> None:
        """Fail subsequent sends; fail_times limits how many."""

    @abstractmethod
    def simulate_rate_limit(
        self, enabled: bool, retry_after: int = 60, times: int | None = None
    ) -> None: ...

    @abstractmethod
    def simulate_delay(self, delay_ms: int) -> None: ...

    @abstractmethod
    def attempt_count(self) -> int:
        """Number of send() calls, successful or not."""

    @abstractmethod
    def reset(self) -> None:
        """Clear sent mail and all simulations."""
