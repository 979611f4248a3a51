"""Celery tasks for deadswitch.

Tasks are explicitly imported here to register them with Celery.
No autodiscovery - all tasks must be imported in this module.

Usage in worker:
    from deadswitch.tasks import process_reminders, cleanup_email_failures, retry_email_failures
"""

from deadswitch.tasks.cleanup import cleanup_email_failures
from deadswitch.tasks.process_reminders import process_reminders
from deadswitch.tasks.retry_failures import retry_email_failures

__all__ = ["process_reminders", "cleanup_email_failures", "retry_email_failures"]
