"""SQLAlchemy ORM models for the dead man's switch.

Defines all database tables using SQLAlchemy 2.x declarative patterns.
Column types are the portable SQLAlchemy ones (Uuid, DateTime(timezone=True))
so the same metadata runs on PostgreSQL in production and SQLite in tests.
Enum columns store the enum *values* ("7_days", not "seven_days").

Rows never leave the db layer as-is: deadswitch.db.mappers converts them into
immutable domain records.
"""

from datetime import UTC, datetime
from enum import Enum as PyEnum
from uuid import UUID, uuid4

from sqlalchemy import (
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _enum_values(enum_cls: type[PyEnum]) -> list[str]:
    return [member.value for member in enum_cls]


# =============================================================================
# Enums
# =============================================================================


class SecretStatus(str, PyEnum):
    """Secret lifecycle states.

    States:
        active: Deadline is running; reminders and disclosure apply
        paused: Excluded from scheduling until resumed
        triggered: Disclosed to recipients (terminal)
    """

    active = "active"
    paused = "paused"
    triggered = "triggered"


class ReminderType(str, PyEnum):
    """Reminder tiers, most relaxed first."""

    seven_days = "7_days"
    three_days = "3_days"
    twenty_four_hours = "24_hours"
    twelve_hours = "12_hours"
    one_hour = "1_hour"
    critical = "critical"


class ReminderJobStatus(str, PyEnum):
    """Lifecycle of a reminder send; pending is the claim taken before sending."""

    pending = "pending"
    sent = "sent"
    failed = "failed"
    cancelled = "cancelled"


class EmailType(str, PyEnum):
    """Kinds of outgoing email tracked by failure escalation."""

    reminder = "reminder"
    disclosure = "disclosure"
    admin_notification = "admin_notification"
    verification = "verification"


# =============================================================================
# Models
# =============================================================================


class Secret(Base):
    """A deposited secret and its check-in deadline.

    next_check_in is always last_check_in + check_in_days, computed in
    whole milliseconds by deadswitch.services.disclosure.
    server_share/share_nonce being NULL means the secret is disabled.
    disclosure_claimed_at is set by the scheduler run that is mailing the
    recipients; a claim older than last_check_in belongs to an earlier cycle.
    """

    __tablename__ = "secrets"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    check_in_days: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[SecretStatus] = mapped_column(
        Enum(
            SecretStatus,
            name="secret_status_enum",
            values_callable=_enum_values,
        ),
        nullable=False,
        default=SecretStatus.active,
    )
    server_share: Mapped[str | None] = mapped_column(Text, nullable=True)
    share_nonce: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_check_in: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    next_check_in: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    triggered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    disclosure_claimed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (Index("ix_secrets_status_next_check_in", "status", "next_check_in"),)

    # Relationships
    recipients: Mapped[list["SecretRecipient"]] = relationship(
        "SecretRecipient",
        back_populates="secret",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="SecretRecipient.position",
    )
    check_in_tokens: Mapped[list["CheckInToken"]] = relationship(
        "CheckInToken",
        back_populates="secret",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    reminder_jobs: Mapped[list["ReminderJob"]] = relationship(
        "ReminderJob",
        back_populates="secret",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class SecretRecipient(Base):
    """A disclosure recipient. Exactly one of email/phone is normally set."""

    __tablename__ = "secret_recipients"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    secret_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("secrets.id", ondelete="CASCADE"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[str | None] = mapped_column(Text, nullable=True)
    phone: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        UniqueConstraint("secret_id", "position", name="uix_secret_recipients_secret_position"),
    )

    secret: Mapped["Secret"] = relationship("Secret", back_populates="recipients")


class UserContactMethod(Base):
    """Owner contact details. Written by the account surface, read here."""

    __tablename__ = "user_contact_methods"

    user_id: Mapped[str] = mapped_column(Text, primary_key=True)
    email: Mapped[str | None] = mapped_column(Text, nullable=True)
    phone: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )


class CheckInToken(Base):
    """Single-use check-in credential.

    used_at is set exactly once, by a conditional UPDATE ... WHERE used_at IS NULL.
    """

    __tablename__ = "check_in_tokens"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    secret_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("secrets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    token: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    secret: Mapped["Secret"] = relationship("Secret", back_populates="check_in_tokens")


class ReminderJob(Base):
    """Claim and outcome for one reminder tier within one check-in cycle.

    cycle_start is the secret's last_check_in when the row was claimed; the
    unique key on (secret_id, reminder_type, cycle_start) lets exactly one
    scheduler run send a tier per cycle. Rows from earlier cycles are ignored.
    """

    __tablename__ = "reminder_jobs"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    secret_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("secrets.id", ondelete="CASCADE"),
        nullable=False,
    )
    reminder_type: Mapped[ReminderType] = mapped_column(
        Enum(
            ReminderType,
            name="reminder_type_enum",
            values_callable=_enum_values,
        ),
        nullable=False,
    )
    cycle_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    scheduled_for: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[ReminderJobStatus] = mapped_column(
        Enum(
            ReminderJobStatus,
            name="reminder_job_status_enum",
            values_callable=_enum_values,
        ),
        nullable=False,
    )
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        UniqueConstraint(
            "secret_id", "reminder_type", "cycle_start", name="uq_reminder_jobs_cycle_tier"
        ),
    )

    secret: Mapped["Secret"] = relationship("Secret", back_populates="reminder_jobs")


class EmailFailure(Base):
    """A failed logical send, kept until resolved and past retention.

    secret_id lets the retry pass rebuild the message; message bodies are never
    stored because a disclosure body carries the server share.
    """

    __tablename__ = "email_failures"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    email_type: Mapped[EmailType] = mapped_column(
        Enum(
            EmailType,
            name="email_type_enum",
            values_callable=_enum_values,
        ),
        nullable=False,
    )
    provider: Mapped[str] = mapped_column(Text, nullable=False)
    recipient: Mapped[str] = mapped_column(Text, nullable=False)
    subject: Mapped[str] = mapped_column(Text, nullable=False)
    secret_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("secrets.id", ondelete="SET NULL"),
        nullable=True,
    )
    error_message: Mapped[str] = mapped_column(Text, nullable=False)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_retry_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_email_failures_lookup", "email_type", "recipient", "subject"),
        Index("ix_email_failures_resolved_at", "resolved_at"),
    )
