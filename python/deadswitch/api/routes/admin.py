"""Operator routes for email delivery failures.

Guarded by the same bearer secret as the scheduler routes.

- GET /api/admin/email-failures: list (filters) or stats (?stats=true)
- POST /api/admin/email-failures/{failure_id}/resolve: mark resolved
- POST /api/admin/email-failures/{failure_id}/retry: re-send now, ignoring
  spacing and the retry budget

Response envelope: {"data": ...}
"""

from datetime import UTC, datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from deadswitch.api.deps import get_db, get_escalation, get_retry_service
from deadswitch.auth import require_cron_auth
from deadswitch.db.models import EmailType
from deadswitch.responses import success_response
from deadswitch.schemas import (
    EmailFailureListResponse,
    EmailFailureOut,
    EmailFailureStats,
    RetryOutcomeOut,
)
from deadswitch.services.email_retry import FailureRetryService
from deadswitch.services.escalation import FailureEscalationService

router = APIRouter(prefix="/api/admin", dependencies=[Depends(require_cron_auth)])


@router.get("/email-failures")
def list_email_failures(
    db: Annotated[Session, Depends(get_db)],
    escalation: Annotated[FailureEscalationService, Depends(get_escalation)],
    email_type: Annotated[EmailType | None, Query(alias="emailType")] = None,
    provider: str | None = None,
    recipient: str | None = None,
    unresolved_only: Annotated[bool, Query(alias="unresolvedOnly")] = False,
    stats: bool = False,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> dict:
    """List failures newest first, or return aggregate counts with ?stats=true."""
    if stats:
        return success_response(EmailFailureStats(**escalation.stats(db)).to_response())

    failures = escalation.query_failures(
        db,
        email_type=email_type,
        provider=provider,
        recipient=recipient,
        unresolved_only=unresolved_only,
        limit=limit,
        offset=offset,
    )
    return success_response(
        EmailFailureListResponse(
            failures=[EmailFailureOut.from_record(f) for f in failures],
            count=len(failures),
            limit=limit,
            offset=offset,
        ).to_response()
    )


@router.post("/email-failures/{failure_id}/resolve")
def resolve_email_failure(
    failure_id: UUID,
    db: Annotated[Session, Depends(get_db)],
    escalation: Annotated[FailureEscalationService, Depends(get_escalation)],
) -> dict:
    record = escalation.resolve(db, failure_id, datetime.now(UTC))
    return success_response(EmailFailureOut.from_record(record).to_response())


@router.post("/email-failures/{failure_id}/retry")
def retry_email_failure(
    failure_id: UUID,
    db: Annotated[Session, Depends(get_db)],
    retry: Annotated[FailureRetryService, Depends(get_retry_service)],
) -> dict:
    outcome = retry.retry_failure(db, failure_id, datetime.now(UTC), force=True)
    return success_response(RetryOutcomeOut.from_outcome(outcome).to_response())
