"""Secret lifecycle and deadline arithmetic.

States:
    active -> active      check-in resets the deadline
    active -> triggered   deadline missed; terminal
    active <-> paused     owner controlled; paused secrets are never scheduled

Deadlines are computed in whole milliseconds on UTC instants
(next_check_in = last_check_in + check_in_days * 86_400_000 ms), so a DST
change in the owner's timezone never shifts them.

Every state change is a conditional UPDATE keyed on the current status. A
concurrent check-in and scheduler disclosure therefore cannot both win: the
loser's UPDATE matches zero rows. Overlapping scheduler runs are kept apart
the same way: only the run whose claim_disclosure UPDATE matches mails the
recipients.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session, selectinload

from deadswitch.db.mappers import SecretRecord, secret_from_row
from deadswitch.db.models import ReminderType, Secret, SecretStatus
from deadswitch.db.session import transaction
from deadswitch.errors import InvalidRequestError, SecretNotFoundError, SecretTriggeredError
from deadswitch.logging import get_logger

logger = get_logger(__name__)

MS_PER_DAY = 86_400_000
MS_PER_HOUR = 3_600_000


@dataclass(frozen=True)
class ReminderTier:
    """A reminder bucket: sent once the remaining time drops to `threshold`."""

    reminder_type: ReminderType
    threshold: timedelta
    high_priority: bool


# Least urgent first
REMINDER_TIERS: tuple[ReminderTier, ...] = (
    ReminderTier(ReminderType.seven_days, timedelta(days=7), False),
    ReminderTier(ReminderType.three_days, timedelta(days=3), False),
    ReminderTier(ReminderType.twenty_four_hours, timedelta(hours=24), False),
    ReminderTier(ReminderType.twelve_hours, timedelta(hours=12), True),
    ReminderTier(ReminderType.one_hour, timedelta(hours=1), True),
    ReminderTier(ReminderType.critical, timedelta(minutes=15), True),
)

TIERS_BY_TYPE: dict[ReminderType, ReminderTier] = {t.reminder_type: t for t in REMINDER_TIERS}

# The scan window must cover the least urgent tier
MAX_TIER_THRESHOLD = max(t.threshold for t in REMINDER_TIERS)


# =============================================================================
# Pure deadline logic
# =============================================================================


def compute_next_check_in(last_check_in: datetime, check_in_days: int) -> datetime:
    """Return last_check_in + check_in_days, in exact milliseconds."""
    if check_in_days < 1:
        raise InvalidRequestError(message="Check-in interval must be at least 1 day")
    return last_check_in + timedelta(milliseconds=check_in_days * MS_PER_DAY)


def days_remaining(secret: SecretRecord, now: datetime) -> float:
    """Fractional days until the deadline (negative once past due)."""
    delta = secret.next_check_in - now
    return delta / timedelta(milliseconds=MS_PER_DAY)


def is_disclosure_due(secret: SecretRecord, now: datetime) -> bool:
    """Disclosure is due once an active secret's deadline has been reached."""
    if secret.status != SecretStatus.active:
        return False
    return now >= secret.next_check_in


def due_reminder_tier(
    secret: SecretRecord,
    now: datetime,
    already_sent: frozenset[ReminderType] | set[ReminderType] = frozenset(),
) -> ReminderType | None:
    """Return the reminder tier to send now, or None.

    Picks the most urgent tier whose threshold the remaining time has dropped
    to. If that tier was already handled this cycle nothing is sent; less
    urgent tiers are never sent after a more urgent one has become due.
    """
    if secret.status != SecretStatus.active:
        return None
    if is_disclosure_due(secret, now):
        return None

    remaining = secret.next_check_in - now
    due = None
    for tier in REMINDER_TIERS:
        if remaining <= tier.threshold:
            due = tier.reminder_type

    if due is None or due in already_sent:
        return None
    return due


def is_high_priority(reminder_type: ReminderType) -> bool:
    return TIERS_BY_TYPE[reminder_type].high_priority


# =============================================================================
# Store-backed transitions
# =============================================================================


def get_secret(db: Session, secret_id: UUID, with_recipients: bool = False) -> SecretRecord:
    """Load a secret record or raise SecretNotFoundError."""
    stmt = select(Secret).where(Secret.id == secret_id)
    if with_recipients:
        stmt = stmt.options(selectinload(Secret.recipients))
    row = db.scalar(stmt)
    if row is None:
        raise SecretNotFoundError()
    return secret_from_row(row, include_recipients=with_recipients)


def apply_check_in(db: Session, secret_id: UUID, now: datetime) -> SecretRecord:
    """Reset a secret's deadline inside the caller's transaction.

    Does not commit. Raises SecretNotFoundError or SecretTriggeredError; the
    caller is expected to roll back on either.
    """
    secret = get_secret(db, secret_id)
    if secret.status == SecretStatus.triggered:
        raise SecretTriggeredError()

    next_check_in = compute_next_check_in(now, secret.check_in_days)
    result = db.execute(
        update(Secret)
        .where(Secret.id == secret_id, Secret.status != SecretStatus.triggered)
        .values(last_check_in=now, next_check_in=next_check_in, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        # Disclosed between our read and our write
        raise SecretTriggeredError()

    return get_secret(db, secret_id)


def check_in(db: Session, secret_id: UUID, now: datetime) -> SecretRecord:
    """Owner check-in: reset the deadline and start a new reminder cycle."""
    with transaction(db):
        secret = apply_check_in(db, secret_id, now)

    logger.info(
        "secret_checked_in",
        secret_id=str(secret_id),
        next_check_in=secret.next_check_in.isoformat(),
    )
    return secret


def pause(db: Session, secret_id: UUID, now: datetime) -> SecretRecord:
    """Move an active secret to paused. Pausing a paused secret is a no-op."""
    with transaction(db):
        result = db.execute(
            update(Secret)
            .where(Secret.id == secret_id, Secret.status == SecretStatus.active)
            .values(status=SecretStatus.paused, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        secret = get_secret(db, secret_id)
        if result.rowcount != 1 and secret.status == SecretStatus.triggered:
            raise SecretTriggeredError()

    logger.info("secret_paused", secret_id=str(secret_id))
    return secret


def resume(db: Session, secret_id: UUID, now: datetime) -> SecretRecord:
    """Move a paused secret back to active with a fresh cycle starting now."""
    with transaction(db):
        secret = get_secret(db, secret_id)
        if secret.status == SecretStatus.triggered:
            raise SecretTriggeredError()
        if secret.status == SecretStatus.active:
            return secret

        result = db.execute(
            update(Secret)
            .where(Secret.id == secret_id, Secret.status == SecretStatus.paused)
            .values(
                status=SecretStatus.active,
                last_check_in=now,
                next_check_in=compute_next_check_in(now, secret.check_in_days),
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise SecretTriggeredError()
        secret = get_secret(db, secret_id)

    logger.info(
        "secret_resumed",
        secret_id=str(secret_id),
        next_check_in=secret.next_check_in.isoformat(),
    )
    return secret


def mark_triggered(db: Session, secret_id: UUID, now: datetime) -> bool:
    """Transition active -> triggered. Returns False if someone else got there first.

    The caller owns the transaction.
    """
    result = db.execute(
        update(Secret)
        .where(Secret.id == secret_id, Secret.status == SecretStatus.active)
        .values(status=SecretStatus.triggered, triggered_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def claim_disclosure(db: Session, secret_id: UUID, now: datetime, stale_before: datetime) -> bool:
    """Take the right to mail a due secret's recipients. Returns False if another run holds it.

    The claim only succeeds while the secret is active and past its deadline.
    A claim taken in an earlier cycle (before the latest check-in) or older
    than ``stale_before`` (its run died mid-send) is taken over. The caller
    owns the transaction.
    """
    result = db.execute(
        update(Secret)
        .where(
            Secret.id == secret_id,
            Secret.status == SecretStatus.active,
            Secret.next_check_in <= now,
            or_(
                Secret.disclosure_claimed_at.is_(None),
                Secret.disclosure_claimed_at < Secret.last_check_in,
                Secret.disclosure_claimed_at < stale_before,
            ),
        )
        .values(disclosure_claimed_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1
