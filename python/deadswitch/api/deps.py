"""FastAPI dependencies for route handlers.

Services are built once in create_app() and kept on app.state; handlers get
them through these dependencies so tests can swap any of them.
"""

from fastapi import Request

from deadswitch.config import Settings
from deadswitch.db.session import get_db
from deadswitch.services.check_in import CheckInTokenService
from deadswitch.services.email_retry import FailureRetryService
from deadswitch.services.escalation import FailureEscalationService
from deadswitch.services.scheduler import ReminderScheduler

__all__ = [
    "get_db",
    "get_settings_dep",
    "get_token_service",
    "get_scheduler",
    "get_escalation",
    "get_retry_service",
]


def get_settings_dep(request: Request) -> Settings:
    return request.app.state.settings


def get_token_service(request: Request) -> CheckInTokenService:
    return request.app.state.token_service


def get_scheduler(request: Request) -> ReminderScheduler:
    return request.app.state.scheduler


def get_escalation(request: Request) -> FailureEscalationService:
    return request.app.state.escalation


def get_retry_service(request: Request) -> FailureRetryService:
    return request.app.state.retry
