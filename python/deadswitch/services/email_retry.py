"""Retry pass over logged delivery failures.

Each unresolved failure gets a per-type budget of re-sends:

    disclosure          5
    reminder            3
    verification        2
    admin_notification  1

Only reminders and disclosures can be rebuilt from stored state (message
bodies are never kept), so only those are re-sent; the others are listed for
operators. Re-sends are spaced 5 min * 2**retry_count apart (capped at 6 h),
counted from the last retry or, before the first one, from the failure itself.

Outcome of one re-send:
    success            -> failure resolved
    no longer applies  -> failure resolved (secret gone, checked in, ...)
    failure            -> retry_count + 1; at the budget the operator is alerted
    permanent error    -> budget closed without sending, left for operators

An operator retry (force=True) ignores spacing, budget and the permanent
classification.
"""

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from uuid import UUID

from sqlalchemy.orm import Session

from deadswitch.config import Settings
from deadswitch.db.mappers import EmailFailureRecord
from deadswitch.db.models import EmailType
from deadswitch.logging import get_logger
from deadswitch.services.email import EmailResult
from deadswitch.services.escalation import FailureEscalationService, compute_severity
from deadswitch.services.scheduler import ReminderScheduler

logger = get_logger(__name__)

RETRY_LIMITS: dict[EmailType, int] = {
    EmailType.disclosure: 5,
    EmailType.reminder: 3,
    EmailType.verification: 2,
    EmailType.admin_notification: 1,
}

RESENDABLE_TYPES = frozenset({EmailType.reminder, EmailType.disclosure})

RETRY_BASE_DELAY = timedelta(minutes=5)
RETRY_MAX_DELAY = timedelta(hours=6)

# Errors a re-send cannot fix without someone changing data or config
_PERMANENT_PATTERNS = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"invalid email",
        r"missing recipient",
        r"recipient has no email",
        r"no email address for secret owner",
        r"provider not configured",
        r"invalid api key",
        r"authentication failed",
        r"unauthori[sz]ed",
        r"forbidden",
        r"\b40[13]\b",
    )
)


class FailureKind(str, Enum):
    permanent = "permanent"
    transient = "transient"


def classify_failure(error_message: str) -> FailureKind:
    """Unknown errors are treated as transient."""
    if any(p.search(error_message) for p in _PERMANENT_PATTERNS):
        return FailureKind.permanent
    return FailureKind.transient


def retry_delay(retry_count: int) -> timedelta:
    return min(RETRY_BASE_DELAY * 2**retry_count, RETRY_MAX_DELAY)


def next_retry_at(failure: EmailFailureRecord) -> datetime:
    return (failure.last_retry_at or failure.created_at) + retry_delay(failure.retry_count)


class RetryStatus(str, Enum):
    succeeded = "succeeded"
    failed = "failed"
    exhausted = "exhausted"
    permanent = "permanent"
    obsolete = "obsolete"
    not_due = "not_due"
    claimed = "claimed"
    resolved = "resolved"
    unsupported = "unsupported"


@dataclass(frozen=True)
class RetryOutcome:
    failure_id: UUID
    status: RetryStatus
    error: str | None = None

    def to_dict(self) -> dict:
        return {"failureId": str(self.failure_id), "status": self.status.value, "error": self.error}


@dataclass
class RetrySummary:
    timestamp: datetime
    total: int = 0
    successful: int = 0
    failed: int = 0
    permanent: int = 0
    exhausted: int = 0
    obsolete: int = 0
    skipped: int = 0
    errors: int = 0
    outcomes: list[RetryOutcome] = field(default_factory=list)

    def add(self, outcome: RetryOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.status == RetryStatus.succeeded:
            self.successful += 1
        elif outcome.status == RetryStatus.failed:
            self.failed += 1
        elif outcome.status == RetryStatus.exhausted:
            self.exhausted += 1
        elif outcome.status == RetryStatus.permanent:
            self.permanent += 1
        elif outcome.status == RetryStatus.obsolete:
            self.obsolete += 1
        else:
            self.skipped += 1

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "permanent": self.permanent,
            "exhausted": self.exhausted,
            "obsolete": self.obsolete,
            "skipped": self.skipped,
            "errors": self.errors,
            "timestamp": self.timestamp.isoformat(),
        }


class FailureRetryService:
    """Re-sends logged reminder and disclosure failures.

    Args:
        scheduler: Rebuilds and sends the message for a failure's secret.
        escalation: Owns the failure rows and operator alerts.
        batch_size: Failures looked at per retry_all pass.
    """

    def __init__(
        self,
        scheduler: ReminderScheduler,
        escalation: FailureEscalationService,
        batch_size: int = 50,
    ):
        self._scheduler = scheduler
        self._escalation = escalation
        self._batch_size = batch_size

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        scheduler: ReminderScheduler,
        escalation: FailureEscalationService,
    ) -> "FailureRetryService":
        return cls(scheduler, escalation, batch_size=settings.email_retry_batch_size)

    def retry_all(self, db: Session, now: datetime | None = None) -> RetrySummary:
        """One pass over the oldest open failures that still have budget left."""
        now = now or datetime.now(UTC)
        summary = RetrySummary(timestamp=now)
        candidates = self._escalation.list_unresolved(
            db,
            retry_limits={t: RETRY_LIMITS[t] for t in RESENDABLE_TYPES},
            limit=self._batch_size,
        )
        summary.total = len(candidates)

        for failure in candidates:
            try:
                summary.add(self._retry(db, failure, now, force=False))
            except Exception as exc:
                db.rollback()
                summary.errors += 1
                logger.error(
                    "email_failure_retry_errored",
                    failure_id=str(failure.id),
                    error=str(exc),
                    exc_info=exc,
                )

        logger.info(
            "email_failure_retry_completed",
            total=summary.total,
            successful=summary.successful,
            failed=summary.failed,
            permanent=summary.permanent,
            exhausted=summary.exhausted,
            obsolete=summary.obsolete,
            skipped=summary.skipped,
            errors=summary.errors,
        )
        return summary

    def retry_failure(
        self, db: Session, failure_id: UUID, now: datetime | None = None, force: bool = False
    ) -> RetryOutcome:
        """Retry one failure. Raises NotFoundError for an unknown id."""
        failure = self._escalation.get_failure(db, failure_id)
        return self._retry(db, failure, now or datetime.now(UTC), force=force)

    def _retry(
        self, db: Session, failure: EmailFailureRecord, now: datetime, force: bool
    ) -> RetryOutcome:
        log = logger.bind(failure_id=str(failure.id), email_type=failure.email_type.value)
        limit = RETRY_LIMITS[failure.email_type]

        if failure.resolved_at is not None:
            return RetryOutcome(failure.id, RetryStatus.resolved)
        if failure.email_type not in RESENDABLE_TYPES:
            return RetryOutcome(failure.id, RetryStatus.unsupported)

        if not force:
            if failure.retry_count >= limit:
                return RetryOutcome(failure.id, RetryStatus.exhausted, failure.error_message)
            if classify_failure(failure.error_message) == FailureKind.permanent:
                self._escalation.exhaust_retries(db, failure.id, limit)
                log.warning("email_failure_permanent", error=failure.error_message)
                return RetryOutcome(failure.id, RetryStatus.permanent, failure.error_message)
            if now < next_retry_at(failure):
                return RetryOutcome(failure.id, RetryStatus.not_due)

        if not self._escalation.claim_retry(db, failure, now):
            log.info("email_failure_retry_claimed_elsewhere")
            return RetryOutcome(failure.id, RetryStatus.claimed)

        result = self._resend(db, failure, now)

        if result is None:
            self._escalation.resolve(db, failure.id, now)
            log.info("email_failure_obsolete")
            return RetryOutcome(failure.id, RetryStatus.obsolete)

        if result.success:
            self._escalation.resolve(db, failure.id, now)
            log.info("email_failure_retry_succeeded", attempts=result.attempts)
            return RetryOutcome(failure.id, RetryStatus.succeeded)

        error = result.error or "Unknown error"
        updated = self._escalation.record_retry_failure(db, failure.id, error)
        log.warning("email_failure_retry_failed", retry_count=updated.retry_count, error=error)
        if updated.retry_count >= limit:
            self._escalation.notify_admin(
                updated, compute_severity(updated.email_type, updated.retry_count), None, now
            )
            return RetryOutcome(failure.id, RetryStatus.exhausted, error)
        return RetryOutcome(failure.id, RetryStatus.failed, error)

    def _resend(
        self, db: Session, failure: EmailFailureRecord, now: datetime
    ) -> EmailResult | None:
        # The secret was deleted
        if failure.secret_id is None:
            return None
        if failure.email_type == EmailType.reminder:
            return self._scheduler.resend_reminder(db, failure.secret_id, now)
        return self._scheduler.resend_disclosure(db, failure.secret_id, failure.recipient, now)
