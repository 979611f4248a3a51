"""Scheduler trigger routes.

Called by an external scheduler with `Authorization: Bearer <CRON_SECRET>`.
Every failure of that check is a bare 401.

- POST /api/cron/process-reminders: full pass (reminders and disclosures)
- POST /api/cron/check-secrets: disclosure-only pass
- POST /api/cron/cleanup-email-failures: retention purge and expired tokens
- POST /api/cron/retry-email-failures: one retry pass over logged failures

Per-secret failures are counted in the summary; only an unreachable store
turns a run into a 500.
"""

from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from deadswitch.api.deps import (
    get_db,
    get_escalation,
    get_retry_service,
    get_scheduler,
    get_settings_dep,
    get_token_service,
)
from deadswitch.auth import require_cron_auth
from deadswitch.config import Settings
from deadswitch.schemas import (
    CheckSecretsResponse,
    CleanupResponse,
    ProcessRemindersResponse,
    RetryFailuresResponse,
)
from deadswitch.services.check_in import CheckInTokenService
from deadswitch.services.email_retry import FailureRetryService
from deadswitch.services.escalation import FailureEscalationService
from deadswitch.services.scheduler import ReminderScheduler

router = APIRouter(prefix="/api/cron", dependencies=[Depends(require_cron_auth)])


@router.post("/process-reminders")
def process_reminders(
    scheduler: Annotated[ReminderScheduler, Depends(get_scheduler)],
) -> dict:
    summary = scheduler.run_once(datetime.now(UTC))
    return ProcessRemindersResponse.from_summary(summary).to_response()


@router.post("/check-secrets")
def check_secrets(
    scheduler: Annotated[ReminderScheduler, Depends(get_scheduler)],
) -> dict:
    summary = scheduler.run_once(datetime.now(UTC), disclosures_only=True)
    return CheckSecretsResponse.from_summary(summary).to_response()


@router.post("/cleanup-email-failures")
def cleanup_email_failures(
    db: Annotated[Session, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_settings_dep)],
    escalation: Annotated[FailureEscalationService, Depends(get_escalation)],
    tokens: Annotated[CheckInTokenService, Depends(get_token_service)],
) -> dict:
    now = datetime.now(UTC)
    retention_days = settings.email_failure_retention_days
    failures_deleted = escalation.cleanup(db, retention_days, now)
    tokens_deleted = tokens.cleanup_expired(db, now)
    return CleanupResponse(
        email_failures_deleted=failures_deleted,
        expired_tokens_deleted=tokens_deleted,
        retention_days=retention_days,
        timestamp=now,
    ).to_response()


@router.post("/retry-email-failures")
def retry_email_failures(
    db: Annotated[Session, Depends(get_db)],
    retry: Annotated[FailureRetryService, Depends(get_retry_service)],
) -> dict:
    summary = retry.retry_all(db, datetime.now(UTC))
    return RetryFailuresResponse.from_summary(summary).to_response()
