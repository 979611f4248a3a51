"""Public check-in routes.

The token in the query string is the only credential; there is no session.
Routes are transport-only: each calls exactly one service method.

- POST /api/check-in?token=...: consume the token and reset the deadline
- GET  /api/check-in: liveness/info for the confirmation page

Errors (all 400 unless noted):
    E_TOKEN_MISSING: no token
    E_TOKEN_INVALID: unknown token
    E_TOKEN_ALREADY_USED: token consumed before
    E_TOKEN_EXPIRED: token past expiry
    E_SECRET_TRIGGERED: secret already disclosed
    E_SECRET_NOT_FOUND (404): secret deleted
"""

from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from deadswitch.api.deps import get_db, get_token_service
from deadswitch.schemas import CheckInInfoResponse, CheckInResponse
from deadswitch.services.check_in import CheckInTokenService

router = APIRouter()


@router.post("/api/check-in")
def check_in(
    db: Annotated[Session, Depends(get_db)],
    tokens: Annotated[CheckInTokenService, Depends(get_token_service)],
    token: str | None = None,
) -> dict:
    """Consume a check-in token.

    Returns:
        {"success": true, "secretTitle": ..., "nextCheckIn": ..., "message": ...}
    """
    result = tokens.consume(db, token, datetime.now(UTC))
    return CheckInResponse.for_secret(result.secret_title, result.next_check_in).to_response()


@router.get("/api/check-in")
def check_in_info(token: str | None = None) -> dict:
    return CheckInInfoResponse(
        has_token=bool(token),
        timestamp=datetime.now(UTC),
    ).to_response()
