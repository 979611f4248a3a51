"""Delivery failure logging, severity and operator alerts.

Severity is a pure function of the email type and the failure's retry count:

    disclosure                      -> critical (always)
    reminder, retry_count > 3       -> high
    reminder, otherwise             -> medium
    anything else                   -> low

critical/high failures send an alert to the operator address straight away
(high priority headers); medium/low are only logged.

A repeated failure of the same logical send (type, recipient, subject, still
unresolved) bumps retry_count on the existing row instead of adding a new
one. A later successful send resolves it.

The retry pass (email_retry) reads its candidates through list_unresolved
and claims a row with claim_retry before re-sending, so two overlapping
passes never re-send the same failure.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from uuid import UUID

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.orm import Session

from deadswitch.db.mappers import EmailFailureRecord, email_failure_from_row
from deadswitch.db.models import EmailFailure, EmailType
from deadswitch.db.session import transaction
from deadswitch.errors import ApiErrorCode, NotFoundError
from deadswitch.logging import get_logger
from deadswitch.services.email import EmailData, EmailDeliveryService, EmailResult
from deadswitch.services.templates import MessageRenderer

logger = get_logger(__name__)

HIGH_SEVERITY_RETRY_THRESHOLD = 3


class Severity(str, Enum):
    critical = "critical"
    high = "high"
    medium = "medium"
    low = "low"


ALERTING_SEVERITIES = frozenset({Severity.critical, Severity.high})


def compute_severity(email_type: EmailType, retry_count: int) -> Severity:
    if email_type == EmailType.disclosure:
        return Severity.critical
    if email_type == EmailType.reminder:
        if retry_count > HIGH_SEVERITY_RETRY_THRESHOLD:
            return Severity.high
        return Severity.medium
    return Severity.low


@dataclass(frozen=True)
class FailureData:
    """One failed send, as reported by the caller."""

    email_type: EmailType
    provider: str
    recipient: str
    subject: str
    error_message: str
    secret_title: str | None = None
    secret_id: UUID | None = None


class FailureEscalationService:
    """Records delivery failures and alerts operators.

    Args:
        delivery: Used to send operator alerts.
        renderer: Builds the alert message.
        admin_email: Operator address (ADMIN_ALERT_EMAIL).
    """

    def __init__(
        self,
        delivery: EmailDeliveryService,
        renderer: MessageRenderer,
        admin_email: str,
    ):
        self._delivery = delivery
        self._renderer = renderer
        self._admin_email = admin_email

    def record_failure(self, db: Session, data: FailureData, now: datetime) -> EmailFailureRecord:
        """Record a failure and alert the operator if it is severe enough."""
        with transaction(db):
            existing = db.scalar(
                select(EmailFailure)
                .where(
                    EmailFailure.email_type == data.email_type,
                    EmailFailure.recipient == data.recipient,
                    EmailFailure.subject == data.subject,
                    EmailFailure.resolved_at.is_(None),
                )
                .order_by(EmailFailure.created_at.desc())
                .limit(1)
            )
            if existing is not None:
                db.execute(
                    update(EmailFailure)
                    .where(EmailFailure.id == existing.id)
                    .values(
                        retry_count=EmailFailure.retry_count + 1,
                        error_message=data.error_message,
                        provider=data.provider,
                        secret_id=existing.secret_id or data.secret_id,
                    )
                    .execution_options(synchronize_session=False)
                )
                db.refresh(existing)
                row = existing
            else:
                row = EmailFailure(
                    email_type=data.email_type,
                    provider=data.provider,
                    recipient=data.recipient,
                    subject=data.subject,
                    error_message=data.error_message,
                    retry_count=0,
                    secret_id=data.secret_id,
                    created_at=now,
                )
                db.add(row)
                db.flush()
            record = email_failure_from_row(row)

        severity = compute_severity(record.email_type, record.retry_count)
        logger.warning(
            "email_failure_recorded",
            failure_id=str(record.id),
            email_type=record.email_type.value,
            provider=record.provider,
            retry_count=record.retry_count,
            severity=severity.value,
        )

        if severity in ALERTING_SEVERITIES:
            self.notify_admin(record, severity, data.secret_title, now)

        return record

    def notify_admin(
        self,
        failure: EmailFailureRecord,
        severity: Severity,
        secret_title: str | None,
        now: datetime,
    ) -> EmailResult | None:
        """Send an operator alert. Alerts about alerts are only logged."""
        if failure.email_type == EmailType.admin_notification:
            logger.error("admin_notification_failure_not_escalated", failure_id=str(failure.id))
            return None

        message = self._renderer.render_admin_alert(
            severity=severity.value,
            email_type=failure.email_type.value,
            recipient=failure.recipient,
            error_message=failure.error_message,
            retry_count=failure.retry_count,
            secret_title=secret_title,
            timestamp=now,
        )
        result = self._delivery.send(
            EmailData(
                to=self._admin_email,
                subject=message.subject,
                html=message.html,
                text=message.text,
                priority="high",
            )
        )
        if result.success:
            logger.info(
                "admin_notified",
                failure_id=str(failure.id),
                severity=severity.value,
                message_id=result.message_id,
            )
        else:
            logger.error(
                "admin_notification_failed",
                failure_id=str(failure.id),
                severity=severity.value,
                error=result.error,
            )
        return result

    def get_failure(self, db: Session, failure_id: UUID) -> EmailFailureRecord:
        with transaction(db):
            row = db.get(EmailFailure, failure_id, populate_existing=True)
            if row is None:
                raise NotFoundError(
                    ApiErrorCode.E_EMAIL_FAILURE_NOT_FOUND, "Email failure not found"
                )
            return email_failure_from_row(row)

    def resolve(self, db: Session, failure_id: UUID, now: datetime) -> EmailFailureRecord:
        """Mark a failure resolved. Resolving twice keeps the first timestamp."""
        with transaction(db):
            row = db.get(EmailFailure, failure_id)
            if row is None:
                raise NotFoundError(ApiErrorCode.E_EMAIL_FAILURE_NOT_FOUND, "Email failure not found")
            if row.resolved_at is None:
                row.resolved_at = now
                db.flush()
            record = email_failure_from_row(row)

        logger.info("email_failure_resolved", failure_id=str(failure_id))
        return record

    def resolve_matching(
        self,
        db: Session,
        email_type: EmailType,
        recipient: str,
        subject: str,
        now: datetime,
    ) -> int:
        """Resolve open failures for a logical send that has now succeeded."""
        with transaction(db):
            result = db.execute(
                update(EmailFailure)
                .where(
                    EmailFailure.email_type == email_type,
                    EmailFailure.recipient == recipient,
                    EmailFailure.subject == subject,
                    EmailFailure.resolved_at.is_(None),
                )
                .values(resolved_at=now)
                .execution_options(synchronize_session=False)
            )
        resolved = result.rowcount or 0
        if resolved:
            logger.info("email_failures_auto_resolved", email_type=email_type.value, count=resolved)
        return resolved

    def cleanup(self, db: Session, retention_days: int, now: datetime) -> int:
        """Delete resolved failures whose resolved_at is older than the retention window."""
        cutoff = now - timedelta(days=retention_days)
        with transaction(db):
            result = db.execute(
                delete(EmailFailure)
                .where(EmailFailure.resolved_at.is_not(None), EmailFailure.resolved_at < cutoff)
                .execution_options(synchronize_session=False)
            )
        deleted = result.rowcount or 0
        logger.info("email_failures_cleaned_up", count=deleted, retention_days=retention_days)
        return deleted

    def query_failures(
        self,
        db: Session,
        *,
        email_type: EmailType | None = None,
        provider: str | None = None,
        recipient: str | None = None,
        unresolved_only: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> list[EmailFailureRecord]:
        """Newest first, optionally filtered."""
        stmt = select(EmailFailure)
        if email_type is not None:
            stmt = stmt.where(EmailFailure.email_type == email_type)
        if provider is not None:
            stmt = stmt.where(EmailFailure.provider == provider)
        if recipient is not None:
            stmt = stmt.where(EmailFailure.recipient == recipient)
        if unresolved_only:
            stmt = stmt.where(EmailFailure.resolved_at.is_(None))
        rows = db.scalars(
            stmt.order_by(EmailFailure.created_at.desc()).limit(limit).offset(offset)
        ).all()
        return [email_failure_from_row(row) for row in rows]

    def list_unresolved(
        self,
        db: Session,
        *,
        retry_limits: Mapping[EmailType, int] | None = None,
        limit: int = 100,
    ) -> list[EmailFailureRecord]:
        """Open failures, oldest first.

        With ``retry_limits``, only rows of a listed type whose retry_count is
        still under that type's limit are returned.
        """
        stmt = select(EmailFailure).where(EmailFailure.resolved_at.is_(None))
        if retry_limits is not None:
            stmt = stmt.where(
                or_(
                    *(
                        and_(EmailFailure.email_type == email_type, EmailFailure.retry_count < cap)
                        for email_type, cap in retry_limits.items()
                    )
                )
            )
        rows = db.scalars(
            stmt.order_by(EmailFailure.created_at.asc(), EmailFailure.id).limit(limit)
        ).all()
        return [email_failure_from_row(row) for row in rows]

    def claim_retry(self, db: Session, failure: EmailFailureRecord, now: datetime) -> bool:
        """Stamp last_retry_at unless another pass touched the row since it was read."""
        if failure.last_retry_at is None:
            untouched = EmailFailure.last_retry_at.is_(None)
        else:
            untouched = EmailFailure.last_retry_at == failure.last_retry_at
        with transaction(db):
            result = db.execute(
                update(EmailFailure)
                .where(
                    EmailFailure.id == failure.id,
                    EmailFailure.resolved_at.is_(None),
                    EmailFailure.retry_count == failure.retry_count,
                    untouched,
                )
                .values(last_retry_at=now)
                .execution_options(synchronize_session=False)
            )
        return result.rowcount == 1

    def record_retry_failure(
        self, db: Session, failure_id: UUID, error_message: str
    ) -> EmailFailureRecord:
        """Count one more failed re-send against an existing row."""
        with transaction(db):
            db.execute(
                update(EmailFailure)
                .where(EmailFailure.id == failure_id)
                .values(retry_count=EmailFailure.retry_count + 1, error_message=error_message)
                .execution_options(synchronize_session=False)
            )
            row = db.scalar(
                select(EmailFailure)
                .where(EmailFailure.id == failure_id)
                .execution_options(populate_existing=True)
            )
            record = email_failure_from_row(row)
        return record

    def exhaust_retries(self, db: Session, failure_id: UUID, retry_limit: int) -> None:
        """Close the retry budget of a failure that re-sending cannot fix."""
        with transaction(db):
            db.execute(
                update(EmailFailure)
                .where(EmailFailure.id == failure_id, EmailFailure.retry_count < retry_limit)
                .values(retry_count=retry_limit)
                .execution_options(synchronize_session=False)
            )

    def stats(self, db: Session) -> dict:
        """Counts: total, unresolved, by type and by provider."""
        total = db.scalar(select(func.count()).select_from(EmailFailure)) or 0
        unresolved = (
            db.scalar(
                select(func.count())
                .select_from(EmailFailure)
                .where(EmailFailure.resolved_at.is_(None))
            )
            or 0
        )
        by_type = {
            EmailType(email_type).value: count
            for email_type, count in db.execute(
                select(EmailFailure.email_type, func.count()).group_by(EmailFailure.email_type)
            )
        }
        by_provider = {
            provider: count
            for provider, count in db.execute(
                select(EmailFailure.provider, func.count()).group_by(EmailFailure.provider)
            )
        }
        return {
            "total": total,
            "unresolved": unresolved,
            "byType": by_type,
            "byProvider": by_provider,
        }
