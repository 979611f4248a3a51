"""Daily maintenance: purge resolved email failures past retention and expired tokens."""

from datetime import UTC, datetime

from sqlalchemy.orm import Session, sessionmaker

from deadswitch.celery import celery_app
from deadswitch.config import get_settings
from deadswitch.db.session import get_session_factory
from deadswitch.logging import clear_task_context, configure_task_logging, get_logger
from deadswitch.services.check_in import CheckInTokenService
from deadswitch.services.escalation import FailureEscalationService
from deadswitch.tasks.runtime import get_worker_services

logger = get_logger(__name__)


def run_cleanup(
    session_factory: sessionmaker[Session],
    escalation: FailureEscalationService,
    tokens: CheckInTokenService,
    retention_days: int,
    now: datetime | None = None,
) -> dict:
    """Task body, callable without a broker."""
    now = now or datetime.now(UTC)
    db = session_factory()
    try:
        failures_deleted = escalation.cleanup(db, retention_days, now)
        tokens_deleted = tokens.cleanup_expired(db, now)
    finally:
        db.close()

    logger.info(
        "cleanup_completed",
        email_failures_deleted=failures_deleted,
        expired_tokens_deleted=tokens_deleted,
    )
    return {
        "emailFailuresDeleted": failures_deleted,
        "expiredTokensDeleted": tokens_deleted,
        "retentionDays": retention_days,
        "timestamp": now.isoformat(),
    }


@celery_app.task(bind=True, name="cleanup_email_failures", ignore_result=False)
def cleanup_email_failures(self, request_id: str | None = None) -> dict:
    """Celery entrypoint for the daily cleanup."""
    configure_task_logging(
        request_id=request_id, task_name="cleanup_email_failures", task_id=self.request.id
    )
    try:
        services = get_worker_services()
        return run_cleanup(
            get_session_factory(),
            services.escalation,
            services.token_service,
            get_settings().email_failure_retention_days,
        )
    finally:
        clear_task_context()
