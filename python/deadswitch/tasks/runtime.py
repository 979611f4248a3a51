"""Per-process service graph for Celery workers.

Built lazily on first use in each worker process and reused by every task
that process runs.
"""

from functools import lru_cache

from deadswitch.config import get_settings
from deadswitch.db.session import get_session_factory
from deadswitch.services.bootstrap import Services, build_services


@lru_cache
def get_worker_services() -> Services:
    return build_services(get_settings(), get_session_factory())


def reset_worker_services() -> None:
    """Forget the cached graph. Called in each forked worker process.

    The inherited HTTP client is not closed: its sockets still belong to the parent.
    """
    get_worker_services.cache_clear()
