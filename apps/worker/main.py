"""Celery worker entrypoint.

Run with: celery -A apps.worker.main:celery_app worker -Q scheduler,default --concurrency=1 --loglevel=info
Beat:     celery -A apps.worker.main:celery_app beat --loglevel=info

This module imports the Celery app and explicitly registers all tasks.
Task definitions are in deadswitch.tasks package - no autodiscovery.

Logging Convention:
- All task log entries include request_id, task_name, task_id when available
- Scheduler runs also carry run_id
- Use configure_task_logging() at the start of each task to set up context

Concurrency Notes:
- One scheduler pass at a time is enough; the pass itself fans out per secret
  on a bounded thread pool (SCHEDULER_MAX_WORKERS)
"""

from celery.signals import worker_process_init

from deadswitch.celery import celery_app
from deadswitch.logging import configure_logging, get_logger

# =============================================================================
# Task Registration (explicit imports - no autodiscovery)
# =============================================================================

# Import tasks to register them with Celery
from deadswitch.tasks import (  # noqa: F401
    cleanup_email_failures,
    process_reminders,
    retry_email_failures,
)
from deadswitch.tasks.runtime import reset_worker_services

# =============================================================================
# Worker Lifecycle
# =============================================================================


@worker_process_init.connect
def setup_worker_process(**kwargs):
    """Configure structlog and drop any service graph inherited across fork."""
    configure_logging()
    reset_worker_services()
    logger = get_logger(__name__)
    logger.info("celery_worker_started", queue="scheduler")


# Export celery_app for Celery to find
# Command: celery -A apps.worker.main:celery_app worker ...
__all__ = ["celery_app"]
