"""Reminder and disclosure scheduler.

One run (run_once) scans the active secrets whose deadline falls inside the
lookahead window or has already passed, then handles each one independently
on a bounded thread pool:

- deadline reached  -> disclose to every recipient, then active -> triggered
- otherwise         -> send the most urgent due reminder tier, once per cycle

Each secret gets its own session. A failure on one secret is logged and
counted; it never aborts the batch. Only failing to read the candidate list
(store unreachable) propagates to the caller.

Runs may overlap (beat every minute, the HTTP trigger, a timed-out run whose
workers are still sending), so nothing is mailed before it has been claimed:

Reminders: a pending reminder_jobs row keyed on (secret, tier, cycle_start)
is inserted before the send; the unique key lets one run win and the others
skip the tier. The row becomes sent or failed afterwards. cycle_start is the
secret's last_check_in, so a check-in starts a fresh cycle without deleting
anything. A row left pending longer than claim_ttl (its run died) is taken
over by the next run.

Disclosure: the run first wins claim_disclosure (a conditional UPDATE on the
secret), then attempts every recipient, then makes the conditional
active -> triggered update. A check-in landing while the emails are in flight
wins that update and the secret stays active; the recipients have still been
mailed. Failed recipient sends are escalated individually and picked up by
the failure retry pass.
"""

import contextvars
import uuid
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from deadswitch.config import Settings
from deadswitch.db.mappers import RecipientRecord, SecretRecord
from deadswitch.db.models import (
    EmailType,
    ReminderJob,
    ReminderJobStatus,
    ReminderType,
    Secret,
    SecretStatus,
    UserContactMethod,
)
from deadswitch.db.session import transaction
from deadswitch.errors import SecretNotFoundError
from deadswitch.logging import get_logger, set_run_id
from deadswitch.services.check_in import CheckInTokenService
from deadswitch.services.crypto import CryptoError, ServerShareCipher
from deadswitch.services.disclosure import (
    MAX_TIER_THRESHOLD,
    TIERS_BY_TYPE,
    claim_disclosure,
    days_remaining,
    due_reminder_tier,
    get_secret,
    is_disclosure_due,
    is_high_priority,
    mark_triggered,
)
from deadswitch.services.email import (
    EmailData,
    EmailDeliveryService,
    EmailErrorClass,
    EmailResult,
)
from deadswitch.services.escalation import FailureData, FailureEscalationService
from deadswitch.services.templates import MessageRenderer, RenderedMessage, build_check_in_url

logger = get_logger(__name__)

UNKNOWN_OWNER_LABEL = "a Dead Man's Switch user"
MISSING_OWNER_EMAIL = "No email address for secret owner"
NO_RECIPIENT_EMAIL = "Recipient has no email address"


@dataclass
class SecretOutcome:
    """Counters produced by handling one secret."""

    reminders_processed: int = 0
    reminders_sent: int = 0
    reminders_failed: int = 0
    disclosures_triggered: int = 0
    disclosures_failed: int = 0
    disclosures_skipped: int = 0


@dataclass
class SchedulerSummary:
    run_id: str
    timestamp: datetime
    processed: int = 0
    reminders_processed: int = 0
    reminders_sent: int = 0
    reminders_failed: int = 0
    disclosures_triggered: int = 0
    disclosures_failed: int = 0
    disclosures_skipped: int = 0
    errors: int = 0
    timed_out: bool = False

    def add(self, outcome: SecretOutcome) -> None:
        self.reminders_processed += outcome.reminders_processed
        self.reminders_sent += outcome.reminders_sent
        self.reminders_failed += outcome.reminders_failed
        self.disclosures_triggered += outcome.disclosures_triggered
        self.disclosures_failed += outcome.disclosures_failed
        self.disclosures_skipped += outcome.disclosures_skipped

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "remindersProcessed": self.reminders_processed,
            "remindersSent": self.reminders_sent,
            "remindersFailed": self.reminders_failed,
            "disclosuresTriggered": self.disclosures_triggered,
            "disclosuresFailed": self.disclosures_failed,
            "disclosuresSkipped": self.disclosures_skipped,
            "timedOut": self.timed_out,
            "runId": self.run_id,
            "timestamp": self.timestamp.isoformat(),
        }


class ReminderScheduler:
    """Scans due secrets and sends reminders and disclosures.

    Args:
        session_factory: Creates one session per scanned secret.
        delivery: Sends all outgoing mail.
        tokens: Issues the check-in token embedded in each reminder.
        escalation: Records and escalates failed sends.
        renderer: Builds message content.
        cipher: Decrypts server shares for disclosure (None makes every
            disclosure fail and leaves the secret active).
        site_url: Base URL for check-in links.
        max_workers: Thread pool size.
        run_timeout_s: Wall-clock budget for one run.
        lookahead_days: How far ahead of the deadline secrets are scanned.
        claim_ttl_s: Age after which a claim left by a dead run is taken over.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        delivery: EmailDeliveryService,
        tokens: CheckInTokenService,
        escalation: FailureEscalationService,
        renderer: MessageRenderer,
        cipher: ServerShareCipher | None,
        *,
        site_url: str,
        max_workers: int = 4,
        run_timeout_s: float = 240,
        lookahead_days: int = 7,
        claim_ttl_s: float = 900,
    ):
        self._session_factory = session_factory
        self._delivery = delivery
        self._tokens = tokens
        self._escalation = escalation
        self._renderer = renderer
        self._cipher = cipher
        self._site_url = site_url
        self._max_workers = max_workers
        self._run_timeout_s = run_timeout_s
        self._claim_ttl = timedelta(seconds=claim_ttl_s)
        # Never scan less than the least urgent tier needs
        self._lookahead = max(timedelta(days=lookahead_days), MAX_TIER_THRESHOLD)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session_factory: sessionmaker[Session],
        delivery: EmailDeliveryService,
        tokens: CheckInTokenService,
        escalation: FailureEscalationService,
        renderer: MessageRenderer,
        cipher: ServerShareCipher | None,
    ) -> "ReminderScheduler":
        return cls(
            session_factory,
            delivery,
            tokens,
            escalation,
            renderer,
            cipher,
            site_url=settings.normalized_site_url,
            max_workers=settings.scheduler_max_workers,
            run_timeout_s=settings.scheduler_run_timeout_s,
            lookahead_days=settings.scheduler_lookahead_days,
            claim_ttl_s=settings.scheduler_claim_ttl_s,
        )

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    def run_once(
        self, now: datetime | None = None, disclosures_only: bool = False
    ) -> SchedulerSummary:
        """Run one scan. Per-secret failures are counted, never raised."""
        now = now or datetime.now(UTC)
        summary = SchedulerSummary(run_id=uuid.uuid4().hex, timestamp=now)
        set_run_id(summary.run_id)

        try:
            candidate_ids = self._find_candidates(now, disclosures_only)
            summary.processed = len(candidate_ids)
            logger.info(
                "scheduler_run_started",
                candidates=len(candidate_ids),
                disclosures_only=disclosures_only,
            )

            executor = ThreadPoolExecutor(
                max_workers=self._max_workers, thread_name_prefix="scheduler"
            )
            try:
                futures = {
                    executor.submit(
                        contextvars.copy_context().run,
                        self._process_secret,
                        secret_id,
                        now,
                        disclosures_only,
                    ): secret_id
                    for secret_id in candidate_ids
                }
                done, not_done = wait(futures, timeout=self._run_timeout_s)
            finally:
                executor.shutdown(wait=False, cancel_futures=True)

            for future in done:
                exc = future.exception()
                if exc is not None:
                    summary.errors += 1
                    logger.error(
                        "secret_processing_failed",
                        secret_id=str(futures[future]),
                        error=str(exc),
                        exc_info=exc,
                    )
                    continue
                summary.add(future.result())

            if not_done:
                summary.timed_out = True
                logger.error(
                    "scheduler_run_timed_out",
                    unfinished=len(not_done),
                    timeout_s=self._run_timeout_s,
                )

            logger.info(
                "scheduler_run_completed",
                processed=summary.processed,
                reminders_sent=summary.reminders_sent,
                reminders_failed=summary.reminders_failed,
                disclosures_triggered=summary.disclosures_triggered,
                disclosures_failed=summary.disclosures_failed,
                disclosures_skipped=summary.disclosures_skipped,
                errors=summary.errors,
                timed_out=summary.timed_out,
            )
            return summary
        finally:
            set_run_id(None)

    def _find_candidates(self, now: datetime, disclosures_only: bool) -> list[UUID]:
        horizon = now if disclosures_only else now + self._lookahead
        db = self._session_factory()
        try:
            with transaction(db):
                return list(
                    db.scalars(
                        select(Secret.id)
                        .where(
                            Secret.status == SecretStatus.active,
                            Secret.next_check_in <= horizon,
                        )
                        .order_by(Secret.next_check_in)
                    )
                )
        finally:
            db.close()

    # -------------------------------------------------------------------------
    # Per secret
    # -------------------------------------------------------------------------

    def _process_secret(
        self, secret_id: UUID, now: datetime, disclosures_only: bool
    ) -> SecretOutcome:
        db = self._session_factory()
        try:
            with transaction(db):
                secret = get_secret(db, secret_id, with_recipients=True)
                handled = self._handled_tiers(db, secret)

            if is_disclosure_due(secret, now):
                return self._disclose(db, secret, now)
            if disclosures_only:
                return SecretOutcome()

            tier = due_reminder_tier(secret, now, handled)
            if tier is None:
                return SecretOutcome()
            return self._remind(db, secret, tier, now)
        finally:
            db.close()

    def _handled_tiers(self, db: Session, secret: SecretRecord) -> frozenset[ReminderType]:
        rows = db.scalars(
            select(ReminderJob.reminder_type).where(
                ReminderJob.secret_id == secret.id,
                ReminderJob.cycle_start >= secret.last_check_in,
                ReminderJob.status.in_([ReminderJobStatus.sent, ReminderJobStatus.failed]),
            )
        )
        return frozenset(ReminderType(r) for r in rows)

    def _owner_email(self, db: Session, user_id: str) -> str | None:
        with transaction(db):
            return db.scalar(
                select(UserContactMethod.email).where(UserContactMethod.user_id == user_id)
            )

    # -------------------------------------------------------------------------
    # Reminders
    # -------------------------------------------------------------------------

    def _remind(
        self, db: Session, secret: SecretRecord, tier: ReminderType, now: datetime
    ) -> SecretOutcome:
        job_id = self._claim_tier(db, secret, tier, now)
        if job_id is None:
            logger.info(
                "reminder_tier_claimed_elsewhere", secret_id=str(secret.id), tier=tier.value
            )
            return SecretOutcome()

        outcome = SecretOutcome(reminders_processed=1)
        owner_email = self._owner_email(db, secret.user_id)
        if not owner_email:
            logger.warning("reminder_owner_email_missing", secret_id=str(secret.id))
            self._finish_job(db, job_id, now, error=MISSING_OWNER_EMAIL)
            outcome.reminders_failed = 1
            return outcome

        message, result = self._send_reminder(
            db, secret, owner_email, now, urgent=is_high_priority(tier)
        )

        if result.success:
            self._finish_job(db, job_id, now)
            self._escalation.resolve_matching(
                db, EmailType.reminder, owner_email, message.subject, now
            )
            outcome.reminders_sent = 1
            logger.info(
                "reminder_sent",
                secret_id=str(secret.id),
                tier=tier.value,
                attempts=result.attempts,
            )
            return outcome

        error = result.error or "Unknown error"
        self._finish_job(db, job_id, now, error=error)
        self._escalation.record_failure(
            db,
            FailureData(
                email_type=EmailType.reminder,
                provider=result.provider,
                recipient=owner_email,
                subject=message.subject,
                error_message=error,
                secret_title=secret.title,
                secret_id=secret.id,
            ),
            now,
        )
        outcome.reminders_failed = 1
        logger.warning(
            "reminder_failed",
            secret_id=str(secret.id),
            tier=tier.value,
            attempts=result.attempts,
            retryable=result.retryable,
        )
        return outcome

    def _send_reminder(
        self,
        db: Session,
        secret: SecretRecord,
        owner_email: str,
        now: datetime,
        urgent: bool,
    ) -> tuple[RenderedMessage, EmailResult]:
        token = self._tokens.issue(db, secret.id, now)
        message = self._renderer.render_reminder(
            recipient_name=owner_email,
            secret_title=secret.title,
            days_remaining=days_remaining(secret, now),
            check_in_url=build_check_in_url(self._site_url, token.token),
            urgent=urgent,
        )
        result = self._delivery.send(
            EmailData(
                to=owner_email,
                subject=message.subject,
                html=message.html,
                text=message.text,
                priority="high" if urgent else "normal",
            )
        )
        return message, result

    def _claim_tier(
        self, db: Session, secret: SecretRecord, tier: ReminderType, now: datetime
    ) -> UUID | None:
        """Insert the pending job for this tier and cycle; None if another run owns it."""
        job_id = uuid.uuid4()
        try:
            with transaction(db):
                db.add(
                    ReminderJob(
                        id=job_id,
                        secret_id=secret.id,
                        reminder_type=tier,
                        cycle_start=secret.last_check_in,
                        scheduled_for=secret.next_check_in - TIERS_BY_TYPE[tier].threshold,
                        status=ReminderJobStatus.pending,
                        created_at=now,
                    )
                )
                db.flush()
            return job_id
        except IntegrityError:
            pass

        # Only a pending row whose run died mid-send may be taken over
        same_tier = (
            ReminderJob.secret_id == secret.id,
            ReminderJob.reminder_type == tier,
            ReminderJob.cycle_start == secret.last_check_in,
        )
        with transaction(db):
            result = db.execute(
                update(ReminderJob)
                .where(
                    *same_tier,
                    ReminderJob.status == ReminderJobStatus.pending,
                    ReminderJob.created_at < now - self._claim_ttl,
                )
                .values(created_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return None
            job_id = db.scalar(select(ReminderJob.id).where(*same_tier))

        logger.warning("reminder_stale_claim_taken_over", secret_id=str(secret.id), tier=tier.value)
        return job_id

    def _finish_job(
        self, db: Session, job_id: UUID, now: datetime, error: str | None = None
    ) -> None:
        failed = error is not None
        with transaction(db):
            db.execute(
                update(ReminderJob)
                .where(ReminderJob.id == job_id)
                .values(
                    status=ReminderJobStatus.failed if failed else ReminderJobStatus.sent,
                    sent_at=None if failed else now,
                    failed_at=now if failed else None,
                    error=error,
                )
                .execution_options(synchronize_session=False)
            )

    # -------------------------------------------------------------------------
    # Disclosure
    # -------------------------------------------------------------------------

    def _disclose(self, db: Session, secret: SecretRecord, now: datetime) -> SecretOutcome:
        outcome = SecretOutcome()
        log = logger.bind(secret_id=str(secret.id))

        if secret.is_disabled:
            log.info("disclosure_skipped_disabled")
            outcome.disclosures_skipped = 1
            return outcome

        if not secret.recipients:
            log.error("disclosure_without_recipients")
            outcome.disclosures_failed = 1
            return outcome

        try:
            server_share = self._decrypt_share(secret)
        except CryptoError as exc:
            # Secret stays active; the next run tries again
            log.error("disclosure_decrypt_failed", error=str(exc))
            outcome.disclosures_failed = 1
            return outcome

        with transaction(db):
            claimed = claim_disclosure(db, secret.id, now, stale_before=now - self._claim_ttl)
        if not claimed:
            log.info("disclosure_claimed_elsewhere")
            return outcome

        owner_label = self._owner_email(db, secret.user_id) or UNKNOWN_OWNER_LABEL
        sent = 0
        failed = 0

        for recipient in secret.recipients:
            if not recipient.email:
                failed += 1
                self._escalation.record_failure(
                    db,
                    FailureData(
                        email_type=EmailType.disclosure,
                        provider=self._delivery.provider_name,
                        recipient=recipient.phone or recipient.name,
                        subject=f"Important Message from {owner_label}",
                        error_message=NO_RECIPIENT_EMAIL,
                        secret_title=secret.title,
                        secret_id=secret.id,
                    ),
                    now,
                )
                continue

            message, result = self._send_disclosure(secret, recipient, owner_label, server_share)
            if result.success:
                sent += 1
                self._escalation.resolve_matching(
                    db, EmailType.disclosure, recipient.email, message.subject, now
                )
                continue

            failed += 1
            log.error("disclosure_send_failed", attempts=result.attempts, error=result.error)
            self._escalation.record_failure(
                db,
                FailureData(
                    email_type=EmailType.disclosure,
                    provider=result.provider,
                    recipient=recipient.email,
                    subject=message.subject,
                    error_message=result.error or "Unknown error",
                    secret_title=secret.title,
                    secret_id=secret.id,
                ),
                now,
            )

        outcome.disclosures_failed = failed

        with transaction(db):
            won = mark_triggered(db, secret.id, now)

        if won:
            outcome.disclosures_triggered = 1
            log.info("secret_triggered", recipients_sent=sent, recipients_failed=failed)
        else:
            log.warning("disclosure_superseded", recipients_sent=sent, recipients_failed=failed)
        return outcome

    def _decrypt_share(self, secret: SecretRecord) -> str:
        if self._cipher is None:
            raise CryptoError("Server share decryption is not configured")
        return self._cipher.decrypt_server_share(secret.server_share, secret.share_nonce)

    def _send_disclosure(
        self,
        secret: SecretRecord,
        recipient: RecipientRecord,
        owner_label: str,
        server_share: str,
    ) -> tuple[RenderedMessage, EmailResult]:
        message = self._renderer.render_disclosure(
            recipient_name=recipient.name,
            secret_title=secret.title,
            owner_email=owner_label,
            server_share=server_share,
            last_seen=secret.last_check_in,
        )
        result = self._delivery.send(
            EmailData(
                to=recipient.email,
                subject=message.subject,
                html=message.html,
                text=message.text,
                priority="high",
            )
        )
        return message, result

    # -------------------------------------------------------------------------
    # Re-sends for the failure retry pass
    # -------------------------------------------------------------------------

    def resend_reminder(self, db: Session, secret_id: UUID, now: datetime) -> EmailResult | None:
        """Send a fresh reminder (new check-in link) after a failed one.

        Returns None when no reminder applies any more: the secret is gone or
        not active, a check-in moved the deadline out of every tier, or the
        deadline has passed and disclosure has taken over.
        """
        try:
            with transaction(db):
                secret = get_secret(db, secret_id)
        except SecretNotFoundError:
            return None
        tier = due_reminder_tier(secret, now)
        if tier is None:
            return None

        owner_email = self._owner_email(db, secret.user_id)
        if not owner_email:
            return self._local_failure(MISSING_OWNER_EMAIL)

        _, result = self._send_reminder(
            db, secret, owner_email, now, urgent=is_high_priority(tier)
        )
        return result

    def resend_disclosure(
        self, db: Session, secret_id: UUID, recipient_email: str, now: datetime
    ) -> EmailResult | None:
        """Re-send a triggered secret's disclosure to one recipient.

        Returns None when it no longer applies: the secret is gone, was not
        disclosed (a check-in won), was disabled, or no longer lists the
        recipient.
        """
        try:
            with transaction(db):
                secret = get_secret(db, secret_id, with_recipients=True)
        except SecretNotFoundError:
            return None
        if secret.status != SecretStatus.triggered or secret.is_disabled:
            return None

        recipient = next((r for r in secret.recipients if r.email == recipient_email), None)
        if recipient is None:
            return None

        try:
            server_share = self._decrypt_share(secret)
        except CryptoError as exc:
            return self._local_failure(str(exc))

        owner_label = self._owner_email(db, secret.user_id) or UNKNOWN_OWNER_LABEL
        _, result = self._send_disclosure(secret, recipient, owner_label, server_share)
        return result

    def _local_failure(self, error: str) -> EmailResult:
        return EmailResult(
            success=False,
            attempts=0,
            provider=self._delivery.provider_name,
            error=error,
            error_class=EmailErrorClass.VALIDATION,
            retryable=False,
        )
