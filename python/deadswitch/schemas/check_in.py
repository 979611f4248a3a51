"""Check-in and server-share response schemas.

The check-in body is consumed by the public confirmation page, so its shape
is fixed: {success, secretTitle, nextCheckIn, message}.
"""

from datetime import datetime

from deadswitch.schemas.base import CamelModel


class CheckInResponse(CamelModel):
    success: bool = True
    secret_title: str
    next_check_in: datetime
    message: str

    @classmethod
    def for_secret(cls, secret_title: str, next_check_in: datetime) -> "CheckInResponse":
        return cls(
            secret_title=secret_title,
            next_check_in=next_check_in,
            message=f'Your secret "{secret_title}" timer has been reset.',
        )


class CheckInInfoResponse(CamelModel):
    message: str = "Check-in endpoint is active. Use POST method to check in."
    has_token: bool
    method: str = "GET"
    timestamp: datetime


class ServerShareResponse(CamelModel):
    """SECURITY: the decrypted share; never logged."""

    server_share: str
