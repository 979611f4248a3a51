"""Database module for deadswitch.

Provides engine creation, session management, transaction helpers, ORM models
and the row-to-record mappers.
"""

from deadswitch.db.engine import create_db_engine, get_engine
from deadswitch.db.models import (
    Base,
    CheckInToken,
    EmailFailure,
    EmailType,
    ReminderJob,
    ReminderJobStatus,
    ReminderType,
    Secret,
    SecretRecipient,
    SecretStatus,
    UserContactMethod,
)
from deadswitch.db.session import get_db, transaction

__all__ = [
    # Engine and session
    "create_db_engine",
    "get_engine",
    "get_db",
    "transaction",
    # Base
    "Base",
    # Enums
    "SecretStatus",
    "ReminderType",
    "ReminderJobStatus",
    "EmailType",
    # Models
    "Secret",
    "SecretRecipient",
    "UserContactMethod",
    "CheckInToken",
    "ReminderJob",
    "EmailFailure",
]
