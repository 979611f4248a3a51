"""Celery application configuration.

Central configuration for Celery used by the worker and beat.

Beat schedule (an alternative to the external HTTP trigger; both call the
same services):
- process_reminders: every minute
- retry_email_failures: every 15 minutes
- cleanup_email_failures: daily at 03:00 UTC

Usage:
    from deadswitch.celery import celery_app

    # Run a pass now:
    celery_app.send_task("process_reminders")
"""

from celery import Celery
from celery.schedules import crontab

from deadswitch.config import get_settings

settings = get_settings()

# Create Celery app
celery_app = Celery("deadswitch")

# Configure from settings
celery_app.conf.broker_url = settings.effective_celery_broker_url
celery_app.conf.result_backend = settings.effective_celery_result_backend

# Task configuration
celery_app.conf.task_serializer = "json"
celery_app.conf.result_serializer = "json"
celery_app.conf.accept_content = ["json"]
celery_app.conf.timezone = "UTC"
celery_app.conf.enable_utc = True

# Scheduler runs must not pile up behind a slow provider
celery_app.conf.task_routes = {
    "process_reminders": {"queue": "scheduler"},
    "cleanup_email_failures": {"queue": "scheduler"},
    "retry_email_failures": {"queue": "scheduler"},
}

# Default queue
celery_app.conf.task_default_queue = "default"

celery_app.conf.beat_schedule = {
    "process-reminders-every-minute": {
        "task": "process_reminders",
        "schedule": 60.0,
        "options": {"expires": 55},
    },
    "retry-email-failures-every-15-minutes": {
        "task": "retry_email_failures",
        "schedule": 900.0,
        "options": {"expires": 840},
    },
    "cleanup-email-failures-daily": {
        "task": "cleanup_email_failures",
        "schedule": crontab(hour=3, minute=0),
    },
}

# For testing: allow eager mode (synchronous execution)
celery_app.conf.task_always_eager = False


def get_celery_app() -> Celery:
    """Get the Celery application instance.

    Returns:
        Configured Celery application.
    """
    return celery_app
