"""Tests for the check-in token service.

Tests cover:
- Issue: 64-hex tokens, expiry from the configured TTL
- Consume: deadline reset, single use, rollback when the secret cannot be
  checked in (token stays unused)
- Concurrency: N simultaneous consumes of one token yield exactly one success
- Share reads: unused until expiry, used tokens for 24 hours after use
- Cleanup of expired tokens
"""

import re
import threading
from datetime import timedelta
from uuid import uuid4

import pytest

from deadswitch.db.models import SecretStatus
from deadswitch.errors import (
    ApiErrorCode,
    ForbiddenError,
    InvalidRequestError,
    InvalidTokenError,
    SecretDisabledError,
    SecretTriggeredError,
    TokenAlreadyUsedError,
    TokenExpiredError,
)
from deadswitch.services.check_in import (
    INVALID_TOKEN_DELAY_S,
    CheckInTokenService,
    generate_token,
)
from deadswitch.services.crypto import CryptoError
from tests.factories import create_secret, create_token, load_secret, load_token, tokens_for_secret
from tests.helpers import SERVER_SHARE_PLAINTEXT, no_sleep, test_cipher


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def tokens(sleeps) -> CheckInTokenService:
    return CheckInTokenService(
        test_cipher(), token_ttl=timedelta(hours=168), sleep=sleeps.append
    )


class TestIssue:
    def test_token_format(self):
        assert re.fullmatch(r"[0-9a-f]{64}", generate_token())
        assert generate_token() != generate_token()

    def test_issue_persists_token_with_ttl(self, db_session, tokens, now):
        secret_id = create_secret(db_session, now=now)

        record = tokens.issue(db_session, secret_id, now)

        assert record.secret_id == secret_id
        assert record.expires_at == now + timedelta(hours=168)
        assert record.used_at is None
        assert load_token(db_session, record.token).id == record.id


class TestConsume:
    def test_consume_resets_deadline(self, db_session, tokens, now):
        secret_id = create_secret(
            db_session, now=now, remaining=timedelta(hours=2), check_in_days=7, title="Vault"
        )
        token = create_token(db_session, secret_id, expires_at=now + timedelta(days=1))

        result = tokens.consume(db_session, token, now)

        assert result.secret_id == secret_id
        assert result.secret_title == "Vault"
        assert result.next_check_in == now + timedelta(days=7)
        secret = load_secret(db_session, secret_id)
        assert secret.last_check_in == now
        assert secret.next_check_in == now + timedelta(days=7)
        assert load_token(db_session, token).used_at == now

    def test_missing_token(self, db_session, tokens, now):
        with pytest.raises(InvalidRequestError) as exc_info:
            tokens.consume(db_session, None, now)

        assert exc_info.value.code == ApiErrorCode.E_TOKEN_MISSING

    def test_unknown_token_waits_before_failing(self, db_session, tokens, sleeps, now):
        with pytest.raises(InvalidTokenError):
            tokens.consume(db_session, "f" * 64, now)

        assert sleeps == [INVALID_TOKEN_DELAY_S]

    def test_second_use_rejected(self, db_session, tokens, now):
        secret_id = create_secret(db_session, now=now)
        token = create_token(db_session, secret_id, expires_at=now + timedelta(days=1))
        tokens.consume(db_session, token, now)

        with pytest.raises(TokenAlreadyUsedError):
            tokens.consume(db_session, token, now + timedelta(minutes=1))

    def test_expired_token_rejected(self, db_session, tokens, now):
        secret_id = create_secret(db_session, now=now, remaining=timedelta(hours=5))
        token = create_token(db_session, secret_id, expires_at=now - timedelta(seconds=1))

        with pytest.raises(TokenExpiredError):
            tokens.consume(db_session, token, now)

        assert load_secret(db_session, secret_id).next_check_in == now + timedelta(hours=5)

    def test_used_check_wins_over_expired_check(self, db_session, tokens, now):
        secret_id = create_secret(db_session, now=now)
        token = create_token(
            db_session,
            secret_id,
            expires_at=now - timedelta(hours=1),
            used_at=now - timedelta(hours=2),
        )

        with pytest.raises(TokenAlreadyUsedError):
            tokens.consume(db_session, token, now)

    def test_triggered_secret_rolls_back_token(self, db_session, tokens, now):
        secret_id = create_secret(
            db_session, now=now, remaining=timedelta(days=-1), status=SecretStatus.triggered
        )
        token = create_token(db_session, secret_id, expires_at=now + timedelta(days=1))

        with pytest.raises(SecretTriggeredError):
            tokens.consume(db_session, token, now)

        assert load_token(db_session, token).used_at is None

    def test_paused_secret_check_in_still_resets_deadline(self, db_session, tokens, now):
        secret_id = create_secret(
            db_session, now=now, remaining=timedelta(hours=1), status=SecretStatus.paused
        )
        token = create_token(db_session, secret_id, expires_at=now + timedelta(days=1))

        tokens.consume(db_session, token, now)

        secret = load_secret(db_session, secret_id)
        assert secret.status == SecretStatus.paused
        assert secret.last_check_in == now


class TestConcurrentConsume:
    def test_exactly_one_concurrent_consume_succeeds(self, db_session, session_factory, now):
        secret_id = create_secret(db_session, now=now, remaining=timedelta(hours=1))
        token = create_token(db_session, secret_id, expires_at=now + timedelta(days=1))
        service = CheckInTokenService(sleep=no_sleep)

        attempts = 8
        barrier = threading.Barrier(attempts)
        outcomes: list[str] = []
        lock = threading.Lock()

        def attempt() -> None:
            db = session_factory()
            try:
                barrier.wait()
                service.consume(db, token, now)
                outcome = "ok"
            except TokenAlreadyUsedError:
                outcome = "already_used"
            finally:
                db.close()
            with lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=attempt) for _ in range(attempts)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert sorted(outcomes) == ["already_used"] * (attempts - 1) + ["ok"]
        assert load_token(db_session, token).used_at == now


class TestShareRead:
    def test_unused_token_reads_share_and_is_marked_used(self, db_session, tokens, now):
        secret_id = create_secret(db_session, now=now)
        token = create_token(db_session, secret_id, expires_at=now + timedelta(days=1))

        share = tokens.retrieve_server_share(db_session, secret_id, token, now)

        assert share == SERVER_SHARE_PLAINTEXT
        assert load_token(db_session, token).used_at == now

    def test_read_does_not_reset_deadline(self, db_session, tokens, now):
        secret_id = create_secret(db_session, now=now, remaining=timedelta(hours=3))
        token = create_token(db_session, secret_id, expires_at=now + timedelta(days=1))

        tokens.retrieve_server_share(db_session, secret_id, token, now)

        assert load_secret(db_session, secret_id).next_check_in == now + timedelta(hours=3)

    def test_used_token_reads_within_grace(self, db_session, tokens, now):
        secret_id = create_secret(db_session, now=now)
        token = create_token(
            db_session,
            secret_id,
            expires_at=now + timedelta(days=1),
            used_at=now - timedelta(hours=23, minutes=59),
        )

        assert tokens.retrieve_server_share(db_session, secret_id, token, now)

    def test_used_token_rejected_after_grace(self, db_session, tokens, now):
        secret_id = create_secret(db_session, now=now)
        token = create_token(
            db_session,
            secret_id,
            expires_at=now + timedelta(days=1),
            used_at=now - timedelta(hours=24, seconds=1),
        )

        with pytest.raises(ForbiddenError) as exc_info:
            tokens.retrieve_server_share(db_session, secret_id, token, now)

        assert exc_info.value.code == ApiErrorCode.E_SHARE_ACCESS_DENIED
        assert "grace period" in exc_info.value.message

    def test_expired_token_rejected(self, db_session, tokens, now):
        secret_id = create_secret(db_session, now=now)
        token = create_token(db_session, secret_id, expires_at=now - timedelta(minutes=1))

        with pytest.raises(ForbiddenError, match="expired"):
            tokens.retrieve_server_share(db_session, secret_id, token, now)

    def test_token_for_other_secret_rejected(self, db_session, tokens, now):
        secret_id = create_secret(db_session, now=now)
        other_id = create_secret(db_session, now=now, title="Other")
        token = create_token(db_session, other_id, expires_at=now + timedelta(days=1))

        with pytest.raises(ForbiddenError):
            tokens.retrieve_server_share(db_session, secret_id, token, now)

    def test_missing_token(self, db_session, tokens, now):
        with pytest.raises(InvalidRequestError):
            tokens.retrieve_server_share(db_session, uuid4(), "", now)

    def test_disabled_secret(self, db_session, tokens, now):
        secret_id = create_secret(db_session, now=now, server_share=None)
        token = create_token(db_session, secret_id, expires_at=now + timedelta(days=1))

        with pytest.raises(SecretDisabledError):
            tokens.retrieve_server_share(db_session, secret_id, token, now)

        assert load_token(db_session, token).used_at is None

    def test_no_cipher_configured(self, db_session, now):
        secret_id = create_secret(db_session, now=now)
        token = create_token(db_session, secret_id, expires_at=now + timedelta(days=1))
        service = CheckInTokenService(None, sleep=no_sleep)

        with pytest.raises(CryptoError):
            service.retrieve_server_share(db_session, secret_id, token, now)


class TestCleanup:
    def test_deletes_only_expired(self, db_session, tokens, now):
        secret_id = create_secret(db_session, now=now)
        create_token(db_session, secret_id, expires_at=now - timedelta(days=1))
        create_token(db_session, secret_id, expires_at=now - timedelta(seconds=1))
        live = create_token(db_session, secret_id, expires_at=now + timedelta(hours=1))

        deleted = tokens.cleanup_expired(db_session, now)

        assert deleted == 2
        assert [t.token for t in tokens_for_secret(db_session, secret_id)] == [live]
