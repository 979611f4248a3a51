"""Construct the engine's services from Settings.

Shared by the API process (create_app) and the Celery worker so both run the
same object graph. Nothing here reads the environment; everything comes from
the Settings passed in.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass

import httpx
from sqlalchemy.orm import Session, sessionmaker

from deadswitch.config import Settings
from deadswitch.logging import get_logger
from deadswitch.services.check_in import CheckInTokenService
from deadswitch.services.crypto import CryptoError, ServerShareCipher
from deadswitch.services.email import EmailDeliveryService, EmailProvider, create_email_provider
from deadswitch.services.email_retry import FailureRetryService
from deadswitch.services.escalation import FailureEscalationService
from deadswitch.services.scheduler import ReminderScheduler
from deadswitch.services.templates import MessageRenderer, PlainMessageRenderer

logger = get_logger(__name__)


@dataclass
class Services:
    http_client: httpx.Client
    provider: EmailProvider
    delivery: EmailDeliveryService
    cipher: ServerShareCipher | None
    token_service: CheckInTokenService
    escalation: FailureEscalationService
    scheduler: ReminderScheduler
    retry: FailureRetryService

    def close(self) -> None:
        self.http_client.close()


def create_http_client(settings: Settings) -> httpx.Client:
    return httpx.Client(
        timeout=httpx.Timeout(float(settings.email_timeout_s), connect=10.0),
        limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
    )


def load_cipher(settings: Settings) -> ServerShareCipher | None:
    """Return the server-share cipher, or None when no usable key is configured.

    Without a cipher, check-in still works; share reads and disclosures fail
    and are reported as such.
    """
    if not settings.server_share_key:
        logger.warning("server_share_key_missing")
        return None
    try:
        return ServerShareCipher.from_settings(settings)
    except CryptoError as e:
        logger.error("server_share_key_invalid", error=str(e))
        return None


def build_services(
    settings: Settings,
    session_factory: sessionmaker[Session],
    *,
    http_client: httpx.Client | None = None,
    provider: EmailProvider | None = None,
    renderer: MessageRenderer | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Services:
    """Wire up every service for one process.

    Args:
        settings: Application settings.
        session_factory: Sessions for the scheduler's per-secret work.
        http_client: Shared client for the email provider (created if None).
        provider: Email provider override (tests pass a MockEmailProvider).
        renderer: Message renderer override.
        sleep: Blocking sleep for retry backoff and the invalid-token delay.
    """
    http_client = http_client or create_http_client(settings)
    provider = provider or create_email_provider(settings, http_client)
    renderer = renderer or PlainMessageRenderer()

    delivery = EmailDeliveryService.from_settings(provider, settings, sleep=sleep)
    cipher = load_cipher(settings)
    token_service = CheckInTokenService.from_settings(settings, cipher, sleep=sleep)
    escalation = FailureEscalationService(delivery, renderer, settings.admin_alert_email)
    scheduler = ReminderScheduler.from_settings(
        settings,
        session_factory,
        delivery,
        token_service,
        escalation,
        renderer,
        cipher,
    )
    retry = FailureRetryService.from_settings(settings, scheduler, escalation)

    logger.info(
        "services_initialized",
        email_provider=provider.name,
        cipher_configured=cipher is not None,
    )
    return Services(
        http_client=http_client,
        provider=provider,
        delivery=delivery,
        cipher=cipher,
        token_service=token_service,
        escalation=escalation,
        scheduler=scheduler,
        retry=retry,
    )
