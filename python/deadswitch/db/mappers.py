"""Row-to-record conversion.

Every ORM row crossing out of the db layer goes through one of the *_from_row
functions here and comes out as a frozen dataclass. Services work on these
records and write back through explicit UPDATE statements, so a row shape never
leaks into business logic.

Drivers without timezone support (SQLite) hand back naive datetimes; all
timestamps are stored in UTC, so naive values are tagged as UTC here.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from uuid import UUID

from deadswitch.db.models import (
    CheckInToken,
    EmailFailure,
    EmailType,
    ReminderJob,
    ReminderJobStatus,
    ReminderType,
    Secret,
    SecretRecipient,
    SecretStatus,
)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Return value as an aware UTC datetime (None passes through)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


@dataclass(frozen=True)
class RecipientRecord:
    name: str
    email: str | None
    phone: str | None


@dataclass(frozen=True)
class SecretRecord:
    """Immutable view of a secret row.

    The encrypted share fields are excluded from repr so they never end up
    in logs by accident.
    """

    id: UUID
    user_id: str
    title: str
    check_in_days: int
    status: SecretStatus
    last_check_in: datetime
    next_check_in: datetime
    triggered_at: datetime | None
    created_at: datetime
    updated_at: datetime
    recipients: tuple[RecipientRecord, ...] = ()
    server_share: str | None = field(default=None, repr=False)
    share_nonce: str | None = field(default=None, repr=False)

    @property
    def is_disabled(self) -> bool:
        """A secret without a server share can no longer be disclosed."""
        return self.server_share is None or self.share_nonce is None


@dataclass(frozen=True)
class CheckInTokenRecord:
    id: UUID
    secret_id: UUID
    token: str = field(repr=False)
    expires_at: datetime
    used_at: datetime | None
    created_at: datetime


@dataclass(frozen=True)
class ReminderJobRecord:
    id: UUID
    secret_id: UUID
    reminder_type: ReminderType
    cycle_start: datetime
    scheduled_for: datetime
    status: ReminderJobStatus
    sent_at: datetime | None
    failed_at: datetime | None
    error: str | None
    created_at: datetime


@dataclass(frozen=True)
class EmailFailureRecord:
    id: UUID
    email_type: EmailType
    provider: str
    recipient: str
    subject: str
    error_message: str
    retry_count: int
    created_at: datetime
    resolved_at: datetime | None
    secret_id: UUID | None = None
    last_retry_at: datetime | None = None


def recipient_from_row(row: SecretRecipient) -> RecipientRecord:
    return RecipientRecord(name=row.name, email=row.email, phone=row.phone)


def secret_from_row(row: Secret, include_recipients: bool = True) -> SecretRecord:
    """Convert a Secret row (and, optionally, its recipients) into a SecretRecord.

    Leave include_recipients off when the recipients relationship has not been
    loaded and should not be.
    """
    recipients: tuple[RecipientRecord, ...] = ()
    if include_recipients:
        recipients = tuple(recipient_from_row(r) for r in row.recipients)

    return SecretRecord(
        id=row.id,
        user_id=row.user_id,
        title=row.title,
        check_in_days=row.check_in_days,
        status=SecretStatus(row.status),
        last_check_in=ensure_utc(row.last_check_in),
        next_check_in=ensure_utc(row.next_check_in),
        triggered_at=ensure_utc(row.triggered_at),
        created_at=ensure_utc(row.created_at),
        updated_at=ensure_utc(row.updated_at),
        recipients=recipients,
        server_share=row.server_share,
        share_nonce=row.share_nonce,
    )


def token_from_row(row: CheckInToken) -> CheckInTokenRecord:
    return CheckInTokenRecord(
        id=row.id,
        secret_id=row.secret_id,
        token=row.token,
        expires_at=ensure_utc(row.expires_at),
        used_at=ensure_utc(row.used_at),
        created_at=ensure_utc(row.created_at),
    )


def reminder_job_from_row(row: ReminderJob) -> ReminderJobRecord:
    return ReminderJobRecord(
        id=row.id,
        secret_id=row.secret_id,
        reminder_type=ReminderType(row.reminder_type),
        cycle_start=ensure_utc(row.cycle_start),
        scheduled_for=ensure_utc(row.scheduled_for),
        status=ReminderJobStatus(row.status),
        sent_at=ensure_utc(row.sent_at),
        failed_at=ensure_utc(row.failed_at),
        error=row.error,
        created_at=ensure_utc(row.created_at),
    )


def email_failure_from_row(row: EmailFailure) -> EmailFailureRecord:
    return EmailFailureRecord(
        id=row.id,
        email_type=EmailType(row.email_type),
        provider=row.provider,
        recipient=row.recipient,
        subject=row.subject,
        error_message=row.error_message,
        retry_count=row.retry_count,
        created_at=ensure_utc(row.created_at),
        resolved_at=ensure_utc(row.resolved_at),
        secret_id=row.secret_id,
        last_retry_at=ensure_utc(row.last_retry_at),
    )
