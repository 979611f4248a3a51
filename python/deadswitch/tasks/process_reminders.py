"""Scheduled reminder/disclosure pass.

Runs the same ReminderScheduler.run_once as POST /api/cron/process-reminders.
Returns the camelCase summary so results read the same in both places.
"""

from datetime import UTC, datetime

from deadswitch.celery import celery_app
from deadswitch.logging import clear_task_context, configure_task_logging, get_logger
from deadswitch.services.scheduler import ReminderScheduler
from deadswitch.tasks.runtime import get_worker_services

logger = get_logger(__name__)


def run_process_reminders(
    scheduler: ReminderScheduler,
    now: datetime | None = None,
    disclosures_only: bool = False,
) -> dict:
    """Task body, callable without a broker."""
    summary = scheduler.run_once(now or datetime.now(UTC), disclosures_only=disclosures_only)
    return summary.to_dict()


@celery_app.task(bind=True, name="process_reminders", ignore_result=False)
def process_reminders(self, request_id: str | None = None, disclosures_only: bool = False) -> dict:
    """Celery entrypoint for one scheduler pass."""
    configure_task_logging(
        request_id=request_id, task_name="process_reminders", task_id=self.request.id
    )
    try:
        logger.info("process_reminders_task_started", disclosures_only=disclosures_only)
        return run_process_reminders(
            get_worker_services().scheduler, disclosures_only=disclosures_only
        )
    finally:
        clear_task_context()
