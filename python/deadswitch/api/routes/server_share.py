"""Server-share retrieval for check-in token holders.

GET /api/secrets/{secret_id}/server-share?token=...

A token authorizes this read until it expires, or for 24 hours after it was
used for a check-in. Reading marks an unused token as used; it never resets
the deadline.

Errors:
    E_TOKEN_MISSING (400): no token
    E_SHARE_ACCESS_DENIED (403): unknown, expired, foreign, or past grace
    E_SECRET_NOT_FOUND (404): secret deleted
    E_SECRET_DISABLED (410): server share deleted
"""

from datetime import UTC, datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from deadswitch.api.deps import get_db, get_token_service
from deadswitch.schemas import ServerShareResponse
from deadswitch.services.check_in import CheckInTokenService

router = APIRouter()


@router.get("/api/secrets/{secret_id}/server-share")
def get_server_share(
    secret_id: UUID,
    db: Annotated[Session, Depends(get_db)],
    tokens: Annotated[CheckInTokenService, Depends(get_token_service)],
    token: str | None = None,
) -> dict:
    """Return the decrypted server share.

    Returns:
        {"serverShare": "..."}, flat like the check-in responses.
    """
    share = tokens.retrieve_server_share(db, secret_id, token, datetime.now(UTC))
    return ServerShareResponse(server_share=share).to_response()
