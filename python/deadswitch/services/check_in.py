"""Single-use check-in tokens.

A token is issued with every reminder email. Consuming it resets the owning
secret's deadline exactly once:

    UPDATE check_in_tokens SET used_at = :now WHERE id = :id AND used_at IS NULL

runs in the same transaction as the secret update. Concurrent requests for
the same token race on that conditional UPDATE; the losers match zero rows and
get TokenAlreadyUsedError. If the secret update fails (secret gone, or already
triggered) the transaction rolls back and the token stays unused.

A consumed token keeps one secondary privilege for 24 hours after used_at:
reading the secret's server share (retrieve_server_share). It never resets
the deadline a second time.
"""

import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from deadswitch.config import Settings
from deadswitch.db.mappers import CheckInTokenRecord, token_from_row
from deadswitch.db.models import CheckInToken
from deadswitch.db.session import transaction
from deadswitch.errors import (
    ApiErrorCode,
    ForbiddenError,
    InvalidRequestError,
    InvalidTokenError,
    SecretDisabledError,
    TokenAlreadyUsedError,
    TokenExpiredError,
)
from deadswitch.logging import get_logger, token_prefix
from deadswitch.services.crypto import CryptoError, ServerShareCipher
from deadswitch.services.disclosure import apply_check_in, get_secret

logger = get_logger(__name__)

TOKEN_BYTES = 32
SHARE_READ_GRACE = timedelta(hours=24)
# Fixed delay on unknown tokens so existence is not observable through timing
INVALID_TOKEN_DELAY_S = 0.1


@dataclass(frozen=True)
class CheckInResult:
    secret_id: UUID
    secret_title: str
    next_check_in: datetime


def generate_token() -> str:
    """Return a fresh unguessable token (64 hex characters)."""
    return secrets.token_hex(TOKEN_BYTES)


class CheckInTokenService:
    """Issues, consumes and authorizes check-in tokens.

    Args:
        cipher: Decrypts server shares for retrieve_server_share (None disables it).
        token_ttl: Lifetime of newly issued tokens.
        sleep: Blocking sleep used for the unknown-token delay.
    """

    def __init__(
        self,
        cipher: ServerShareCipher | None = None,
        *,
        token_ttl: timedelta = timedelta(hours=168),
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._cipher = cipher
        self._token_ttl = token_ttl
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        cipher: ServerShareCipher | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> "CheckInTokenService":
        return cls(
            cipher,
            token_ttl=timedelta(hours=settings.check_in_token_ttl_hours),
            sleep=sleep,
        )

    # -------------------------------------------------------------------------
    # Issue
    # -------------------------------------------------------------------------

    def issue(self, db: Session, secret_id: UUID, now: datetime) -> CheckInTokenRecord:
        """Create and commit a new token for a secret."""
        row = CheckInToken(
            secret_id=secret_id,
            token=generate_token(),
            expires_at=now + self._token_ttl,
            created_at=now,
        )
        with transaction(db):
            db.add(row)
            db.flush()
            record = token_from_row(row)

        logger.info(
            "check_in_token_issued",
            secret_id=str(secret_id),
            token_prefix=token_prefix(record.token),
            expires_at=record.expires_at.isoformat(),
        )
        return record

    # -------------------------------------------------------------------------
    # Consume (check-in)
    # -------------------------------------------------------------------------

    def consume(self, db: Session, token: str | None, now: datetime) -> CheckInResult:
        """Consume a token and reset its secret's deadline.

        Raises:
            InvalidRequestError: token missing.
            InvalidTokenError: token unknown.
            TokenAlreadyUsedError: token consumed before (grace window does not apply here).
            TokenExpiredError: token past expires_at.
            SecretNotFoundError: owning secret is gone.
            SecretTriggeredError: owning secret was already disclosed.
        """
        if not token:
            raise InvalidRequestError(ApiErrorCode.E_TOKEN_MISSING, "Missing token")

        with transaction(db):
            record = self._find(db, token)
            if record is not None:
                if record.used_at is not None:
                    raise TokenAlreadyUsedError()
                if record.expires_at < now:
                    raise TokenExpiredError()

                claimed = db.execute(
                    update(CheckInToken)
                    .where(CheckInToken.id == record.id, CheckInToken.used_at.is_(None))
                    .values(used_at=now)
                    .execution_options(synchronize_session=False)
                )
                if claimed.rowcount != 1:
                    raise TokenAlreadyUsedError()

                secret = apply_check_in(db, record.secret_id, now)

        if record is None:
            self._sleep(INVALID_TOKEN_DELAY_S)
            logger.info("check_in_token_not_found", token_prefix=token_prefix(token))
            raise InvalidTokenError()

        logger.info(
            "check_in_completed",
            secret_id=str(secret.id),
            token_prefix=token_prefix(token),
            next_check_in=secret.next_check_in.isoformat(),
        )
        return CheckInResult(
            secret_id=secret.id,
            secret_title=secret.title,
            next_check_in=secret.next_check_in,
        )

    # -------------------------------------------------------------------------
    # Share read (grace window)
    # -------------------------------------------------------------------------

    def authorize_share_read(
        self, db: Session, secret_id: UUID, token: str | None, now: datetime
    ) -> CheckInTokenRecord:
        """Check that a token may read its secret's server share.

        Unused tokens qualify until they expire; used tokens qualify for
        24 hours after used_at.

        Raises:
            InvalidRequestError: token missing.
            ForbiddenError: token unknown, expired, or past the grace window.
        """
        if not token:
            raise InvalidRequestError(ApiErrorCode.E_TOKEN_MISSING, "Missing token")

        with transaction(db):
            record = self._find(db, token)

        if record is None or record.secret_id != secret_id:
            self._sleep(INVALID_TOKEN_DELAY_S)
            raise ForbiddenError(ApiErrorCode.E_SHARE_ACCESS_DENIED, "Invalid or expired token.")
        if record.expires_at < now:
            raise ForbiddenError(ApiErrorCode.E_SHARE_ACCESS_DENIED, "Token has expired.")
        if record.used_at is not None and now > record.used_at + SHARE_READ_GRACE:
            raise ForbiddenError(
                ApiErrorCode.E_SHARE_ACCESS_DENIED,
                "Token has already been used and the grace period has expired.",
            )
        return record

    def retrieve_server_share(
        self, db: Session, secret_id: UUID, token: str | None, now: datetime
    ) -> str:
        """Return the decrypted server share for a token holder.

        Marks an unused token as used (starting its grace window) without
        touching the deadline.

        Raises:
            ForbiddenError / InvalidRequestError: see authorize_share_read.
            SecretNotFoundError: secret is gone.
            SecretDisabledError: server share was deleted.
            CryptoError: no cipher configured or decryption failed.
        """
        record = self.authorize_share_read(db, secret_id, token, now)

        with transaction(db):
            secret = get_secret(db, secret_id)
            if secret.is_disabled:
                raise SecretDisabledError()
            if record.used_at is None:
                db.execute(
                    update(CheckInToken)
                    .where(CheckInToken.id == record.id, CheckInToken.used_at.is_(None))
                    .values(used_at=now)
                    .execution_options(synchronize_session=False)
                )

        if self._cipher is None:
            raise CryptoError("Server share decryption is not configured")

        share = self._cipher.decrypt_server_share(secret.server_share, secret.share_nonce)
        logger.info(
            "server_share_read",
            secret_id=str(secret_id),
            token_prefix=token_prefix(token),
        )
        return share

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    def cleanup_expired(self, db: Session, now: datetime) -> int:
        """Delete tokens past expires_at. Returns the number deleted."""
        with transaction(db):
            result = db.execute(
                delete(CheckInToken)
                .where(CheckInToken.expires_at < now)
                .execution_options(synchronize_session=False)
            )
        deleted = result.rowcount or 0
        logger.info("expired_check_in_tokens_deleted", count=deleted)
        return deleted

    def _find(self, db: Session, token: str) -> CheckInTokenRecord | None:
        row = db.scalar(select(CheckInToken).where(CheckInToken.token == token))
        return token_from_row(row) if row is not None else None
