"""Pydantic schemas for response bodies.

All schemas are re-exported here for convenient imports.
"""

from deadswitch.schemas.admin import (
    CleanupResponse,
    EmailFailureListResponse,
    EmailFailureOut,
    EmailFailureStats,
    RetryOutcomeOut,
)
from deadswitch.schemas.check_in import (
    CheckInInfoResponse,
    CheckInResponse,
    ServerShareResponse,
)
from deadswitch.schemas.cron import (
    CheckSecretsResponse,
    ProcessRemindersResponse,
    RetryFailuresResponse,
)

__all__ = [
    # Check-in
    "CheckInResponse",
    "CheckInInfoResponse",
    "ServerShareResponse",
    # Cron
    "ProcessRemindersResponse",
    "CheckSecretsResponse",
    "RetryFailuresResponse",
    # Admin
    "EmailFailureOut",
    "EmailFailureStats",
    "EmailFailureListResponse",
    "CleanupResponse",
    "RetryOutcomeOut",
]
