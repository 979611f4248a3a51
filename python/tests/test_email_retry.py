"""Tests for the retry pass over logged delivery failures.

Tests cover:
- Permanent/transient classification and re-send spacing
- One failure: re-sent and resolved, or retry_count bumped; operator alerted
  when the budget runs out
- Failures that no longer apply (check-in, deleted secret) are resolved
- Permanent errors close the budget without sending
- Operator retries ignore spacing and budget
- retry_all: only resendable types with budget left, oldest first, counted
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from deadswitch.db.models import EmailType, SecretStatus
from deadswitch.errors import NotFoundError
from deadswitch.services.email import EmailErrorClass
from deadswitch.services.email_retry import (
    RETRY_LIMITS,
    FailureKind,
    FailureRetryService,
    RetryStatus,
    classify_failure,
    retry_delay,
)
from tests.factories import (
    create_contact,
    create_email_failure,
    create_secret,
    email_failures,
)
from tests.helpers import SERVER_SHARE_PLAINTEXT

OWNER_EMAIL = "owner@example.com"
REMINDER_SUBJECT = 'Reminder: "Family passwords" needs attention'
DISCLOSURE_SUBJECT = f"Important Message from {OWNER_EMAIL}"


@pytest.fixture
def retry(services) -> FailureRetryService:
    return services.retry


def _reminder_failure(db_session, now, secret_id, **overrides):
    values = {
        "created_at": now - timedelta(hours=1),
        "email_type": EmailType.reminder,
        "recipient": OWNER_EMAIL,
        "subject": REMINDER_SUBJECT,
        "secret_id": secret_id,
    }
    values.update(overrides)
    return create_email_failure(db_session, **values)


class TestClassifyFailure:
    @pytest.mark.parametrize(
        "message",
        [
            "Invalid email format",
            "Missing recipient email address",
            "Recipient has no email address",
            "No email address for secret owner",
            "Email provider not configured",
            "Invalid API key",
            "Authentication failed",
            "Unauthorized",
            "HTTP 403 Forbidden",
            "SendGrid returned 401",
        ],
    )
    def test_permanent(self, message):
        assert classify_failure(message) == FailureKind.permanent

    @pytest.mark.parametrize(
        "message",
        ["Simulated email failure", "Rate limit exceeded", "HTTP 503", "Connection reset"],
    )
    def test_transient(self, message):
        assert classify_failure(message) == FailureKind.transient

    def test_retry_limits(self):
        assert RETRY_LIMITS == {
            EmailType.disclosure: 5,
            EmailType.reminder: 3,
            EmailType.verification: 2,
            EmailType.admin_notification: 1,
        }

    @pytest.mark.parametrize(
        ("retry_count", "expected"),
        [
            (0, timedelta(minutes=5)),
            (2, timedelta(minutes=20)),
            (10, timedelta(hours=6)),
        ],
    )
    def test_retry_delay(self, retry_count, expected):
        assert retry_delay(retry_count) == expected


class TestRetryReminder:
    def test_successful_resend_resolves(self, db_session, retry, mock_provider, now):
        create_contact(db_session)
        secret_id = create_secret(db_session, now=now, remaining=timedelta(days=2))
        failure_id = _reminder_failure(db_session, now, secret_id)

        outcome = retry.retry_failure(db_session, failure_id, now)

        assert outcome.status == RetryStatus.succeeded
        sent = mock_provider.sent_emails()
        assert [(e.to, e.subject) for e in sent] == [(OWNER_EMAIL, REMINDER_SUBJECT)]
        assert "check-in?token=" in sent[0].text
        stored = email_failures(db_session)[0]
        assert stored.resolved_at == now
        assert stored.last_retry_at == now

    def test_failed_resend_bumps_retry_count(self, db_session, retry, mock_provider, now):
        create_contact(db_session)
        secret_id = create_secret(db_session, now=now, remaining=timedelta(days=2))
        failure_id = _reminder_failure(db_session, now, secret_id, error_message="HTTP 502")
        mock_provider.simulate_failure(True, message="Provider unavailable")

        outcome = retry.retry_failure(db_session, failure_id, now)

        assert outcome.status == RetryStatus.failed
        assert outcome.error == "Provider unavailable"
        stored = email_failures(db_session)[0]
        assert stored.retry_count == 1
        assert stored.error_message == "Provider unavailable"
        assert stored.last_retry_at == now
        assert stored.resolved_at is None

    def test_last_allowed_retry_alerts_operator(
        self, db_session, retry, mock_provider, settings, now
    ):
        create_contact(db_session)
        secret_id = create_secret(db_session, now=now, remaining=timedelta(days=2))
        failure_id = _reminder_failure(
            db_session, now, secret_id, retry_count=2, created_at=now - timedelta(days=1)
        )
        # Only the reminder fails; the operator alert afterwards goes through
        mock_provider.simulate_failure(
            True, message="Mailbox unavailable", kind=EmailErrorClass.VALIDATION, fail_times=1
        )

        outcome = retry.retry_failure(db_session, failure_id, now)

        assert outcome.status == RetryStatus.exhausted
        assert email_failures(db_session)[0].retry_count == 3
        assert [e.to for e in mock_provider.sent_emails()] == [settings.admin_alert_email]

    def test_not_due_before_spacing_elapses(self, db_session, retry, mock_provider, now):
        create_contact(db_session)
        secret_id = create_secret(db_session, now=now, remaining=timedelta(days=2))
        failure_id = _reminder_failure(
            db_session,
            now,
            secret_id,
            retry_count=2,
            last_retry_at=now - timedelta(minutes=15),
        )

        outcome = retry.retry_failure(db_session, failure_id, now)

        assert outcome.status == RetryStatus.not_due
        assert mock_provider.attempt_count() == 0

        later = now + timedelta(minutes=6)
        assert retry.retry_failure(db_session, failure_id, later).status == RetryStatus.succeeded

    def test_check_in_makes_failure_obsolete(self, db_session, retry, mock_provider, now):
        create_contact(db_session)
        # Checked in since the failure: the deadline is far outside every tier
        secret_id = create_secret(db_session, now=now, remaining=timedelta(days=20))
        failure_id = _reminder_failure(db_session, now, secret_id)

        outcome = retry.retry_failure(db_session, failure_id, now)

        assert outcome.status == RetryStatus.obsolete
        assert mock_provider.attempt_count() == 0
        assert email_failures(db_session)[0].resolved_at == now

    def test_deleted_secret_makes_failure_obsolete(self, db_session, retry, mock_provider, now):
        failure_id = _reminder_failure(db_session, now, None)

        outcome = retry.retry_failure(db_session, failure_id, now)

        assert outcome.status == RetryStatus.obsolete
        assert email_failures(db_session)[0].resolved_at == now

    def test_permanent_error_closes_budget(self, db_session, retry, mock_provider, now):
        create_contact(db_session)
        secret_id = create_secret(db_session, now=now, remaining=timedelta(days=2))
        failure_id = _reminder_failure(
            db_session, now, secret_id, error_message="Invalid email format"
        )

        outcome = retry.retry_failure(db_session, failure_id, now)

        assert outcome.status == RetryStatus.permanent
        assert mock_provider.attempt_count() == 0
        stored = email_failures(db_session)[0]
        assert stored.retry_count == RETRY_LIMITS[EmailType.reminder]
        assert stored.resolved_at is None

    def test_operator_retry_ignores_budget_and_spacing(
        self, db_session, retry, mock_provider, now
    ):
        create_contact(db_session)
        secret_id = create_secret(db_session, now=now, remaining=timedelta(days=2))
        failure_id = _reminder_failure(
            db_session, now, secret_id, created_at=now, retry_count=3
        )

        assert retry.retry_failure(db_session, failure_id, now).status == RetryStatus.exhausted

        outcome = retry.retry_failure(db_session, failure_id, now, force=True)

        assert outcome.status == RetryStatus.succeeded
        assert len(mock_provider.sent_emails()) == 1


class TestRetryDisclosure:
    def test_resent_to_the_failed_recipient(self, db_session, retry, mock_provider, now):
        create_contact(db_session)
        secret_id = create_secret(
            db_session,
            now=now,
            remaining=timedelta(hours=-2),
            status=SecretStatus.triggered,
            recipients=(
                ("Alice", "alice@example.com", None),
                ("Bob", "bob@example.com", None),
            ),
        )
        create_email_failure(
            db_session,
            created_at=now - timedelta(hours=1),
            email_type=EmailType.disclosure,
            recipient="bob@example.com",
            subject=DISCLOSURE_SUBJECT,
            secret_id=secret_id,
        )

        summary = retry.retry_all(db_session, now)

        assert summary.successful == 1
        sent = mock_provider.sent_emails()
        assert [(e.to, e.subject, e.priority) for e in sent] == [
            ("bob@example.com", DISCLOSURE_SUBJECT, "high")
        ]
        assert SERVER_SHARE_PLAINTEXT in sent[0].text

    def test_not_resent_when_check_in_won(self, db_session, retry, mock_provider, now):
        secret_id = create_secret(db_session, now=now, remaining=timedelta(days=10))
        failure_id = create_email_failure(
            db_session,
            created_at=now - timedelta(hours=1),
            email_type=EmailType.disclosure,
            recipient="alice@example.com",
            subject=DISCLOSURE_SUBJECT,
            secret_id=secret_id,
        )

        outcome = retry.retry_failure(db_session, failure_id, now)

        assert outcome.status == RetryStatus.obsolete
        assert mock_provider.attempt_count() == 0


class TestRetryFailureLookup:
    def test_unknown_failure(self, db_session, retry, now):
        with pytest.raises(NotFoundError):
            retry.retry_failure(db_session, uuid4(), now)

    def test_resolved_failure_left_alone(self, db_session, retry, mock_provider, now):
        failure_id = create_email_failure(
            db_session, created_at=now - timedelta(hours=1), resolved_at=now
        )

        outcome = retry.retry_failure(db_session, failure_id, now, force=True)

        assert outcome.status == RetryStatus.resolved
        assert mock_provider.attempt_count() == 0

    def test_verification_is_not_resendable(self, db_session, retry, mock_provider, now):
        failure_id = create_email_failure(
            db_session, created_at=now - timedelta(hours=1), email_type=EmailType.verification
        )

        outcome = retry.retry_failure(db_session, failure_id, now, force=True)

        assert outcome.status == RetryStatus.unsupported
        assert email_failures(db_session)[0].retry_count == 0


class TestRetryAll:
    def test_counts_and_candidates(self, db_session, retry, mock_provider, now):
        create_contact(db_session)
        secret_id = create_secret(db_session, now=now, remaining=timedelta(days=2))
        _reminder_failure(db_session, now, secret_id)
        create_email_failure(
            db_session,
            created_at=now - timedelta(hours=2),
            email_type=EmailType.disclosure,
            recipient="+15551234567",
            error_message="Recipient has no email address",
            secret_id=secret_id,
        )
        # Not candidates: budget spent, not resendable, already resolved
        _reminder_failure(db_session, now, secret_id, retry_count=3, recipient="x@example.com")
        create_email_failure(
            db_session, created_at=now - timedelta(hours=3), email_type=EmailType.verification
        )
        _reminder_failure(db_session, now, secret_id, resolved_at=now, recipient="y@example.com")

        summary = retry.retry_all(db_session, now)

        assert summary.total == 2
        assert summary.successful == 1
        assert summary.permanent == 1
        assert summary.failed == 0
        body = summary.to_dict()
        assert body["total"] == 2
        assert body["timestamp"] == now.isoformat()
        assert len(mock_provider.sent_emails()) == 1

    def test_failed_resend_counted(self, db_session, retry, mock_provider, now):
        create_contact(db_session)
        secret_id = create_secret(db_session, now=now, remaining=timedelta(days=2))
        _reminder_failure(db_session, now, secret_id)
        mock_provider.simulate_failure(True)

        summary = retry.retry_all(db_session, now)

        assert summary.failed == 1
        assert email_failures(db_session)[0].retry_count == 1

    def test_second_pass_waits_for_spacing(self, db_session, retry, mock_provider, now):
        create_contact(db_session)
        secret_id = create_secret(db_session, now=now, remaining=timedelta(days=2))
        _reminder_failure(db_session, now, secret_id)
        mock_provider.simulate_failure(True)

        retry.retry_all(db_session, now)
        second = retry.retry_all(db_session, now + timedelta(minutes=1))

        assert second.total == 1
        assert second.skipped == 1
        assert email_failures(db_session)[0].retry_count == 1

    def test_batch_takes_oldest_first(self, db_session, services, mock_provider, now):
        create_contact(db_session)
        secret_id = create_secret(db_session, now=now, remaining=timedelta(days=2))
        _reminder_failure(
            db_session, now, secret_id, created_at=now - timedelta(hours=1), recipient="new@x.io"
        )
        oldest = _reminder_failure(
            db_session, now, secret_id, created_at=now - timedelta(hours=5)
        )
        retry = FailureRetryService(services.scheduler, services.escalation, batch_size=1)

        summary = retry.retry_all(db_session, now)

        assert summary.total == 1
        assert [o.failure_id for o in summary.outcomes] == [oldest]
