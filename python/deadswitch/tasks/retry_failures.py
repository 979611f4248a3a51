"""Scheduled retry pass over logged delivery failures.

Same FailureRetryService.retry_all as POST /api/cron/retry-email-failures.
"""

from datetime import UTC, datetime

from sqlalchemy.orm import Session, sessionmaker

from deadswitch.celery import celery_app
from deadswitch.db.session import get_session_factory
from deadswitch.logging import clear_task_context, configure_task_logging, get_logger
from deadswitch.services.email_retry import FailureRetryService
from deadswitch.tasks.runtime import get_worker_services

logger = get_logger(__name__)


def run_retry_failures(
    session_factory: sessionmaker[Session],
    retry: FailureRetryService,
    now: datetime | None = None,
) -> dict:
    """Task body, callable without a broker."""
    db = session_factory()
    try:
        summary = retry.retry_all(db, now or datetime.now(UTC))
    finally:
        db.close()
    return summary.to_dict()


@celery_app.task(bind=True, name="retry_email_failures", ignore_result=False)
def retry_email_failures(self, request_id: str | None = None) -> dict:
    """Celery entrypoint for one retry pass."""
    configure_task_logging(
        request_id=request_id, task_name="retry_email_failures", task_id=self.request.id
    )
    try:
        logger.info("retry_email_failures_task_started")
        return run_retry_failures(get_session_factory(), get_worker_services().retry)
    finally:
        clear_task_context()
