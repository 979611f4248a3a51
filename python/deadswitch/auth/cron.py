"""Shared-secret bearer authentication for scheduler and maintenance endpoints.

The external scheduler sends `Authorization: Bearer <CRON_SECRET>`. The scheme
is matched case-insensitively, the value is trimmed, then compared in constant
time against the configured secret. Every failure is the same bare 401 so a
caller learns nothing about which check failed.
"""

import hmac

from fastapi import Request

from deadswitch.errors import AuthenticationError
from deadswitch.logging import get_logger

logger = get_logger(__name__)

AUTHORIZATION_HEADER = "authorization"
BEARER_PREFIX = "bearer "


def extract_bearer_token(header_value: str | None) -> str | None:
    """Return the trimmed bearer token, or None if the header is not a bearer header."""
    if not header_value:
        return None
    if not header_value.lower().startswith(BEARER_PREFIX):
        return None
    token = header_value[len(BEARER_PREFIX) :].strip()
    return token or None


def verify_cron_authorization(header_value: str | None, expected_secret: str | None) -> None:
    """Raise AuthenticationError unless the header carries the expected secret."""
    if not expected_secret:
        logger.error("cron_auth_failure", reason="secret_not_configured")
        raise AuthenticationError()

    token = extract_bearer_token(header_value)
    if token is None:
        logger.warning("cron_auth_failure", reason="missing_or_malformed_header")
        raise AuthenticationError()

    if not hmac.compare_digest(token.encode(), expected_secret.encode()):
        logger.warning("cron_auth_failure", reason="secret_mismatch")
        raise AuthenticationError()


def require_cron_auth(request: Request) -> None:
    """FastAPI dependency guarding cron and admin routes."""
    verify_cron_authorization(
        request.headers.get(AUTHORIZATION_HEADER),
        request.app.state.settings.cron_secret,
    )
