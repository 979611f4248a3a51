"""Operator endpoint schemas for delivery failures."""

from datetime import datetime
from uuid import UUID

from deadswitch.db.mappers import EmailFailureRecord
from deadswitch.schemas.base import CamelModel
from deadswitch.services.email_retry import RetryOutcome


class EmailFailureOut(CamelModel):
    id: UUID
    email_type: str
    provider: str
    recipient: str
    subject: str
    error_message: str
    retry_count: int
    created_at: datetime
    last_retry_at: datetime | None = None
    resolved_at: datetime | None = None

    @classmethod
    def from_record(cls, record: EmailFailureRecord) -> "EmailFailureOut":
        return cls(
            id=record.id,
            email_type=record.email_type.value,
            provider=record.provider,
            recipient=record.recipient,
            subject=record.subject,
            error_message=record.error_message,
            retry_count=record.retry_count,
            created_at=record.created_at,
            last_retry_at=record.last_retry_at,
            resolved_at=record.resolved_at,
        )


class EmailFailureStats(CamelModel):
    total: int
    unresolved: int
    by_type: dict[str, int]
    by_provider: dict[str, int]


class EmailFailureListResponse(CamelModel):
    failures: list[EmailFailureOut]
    count: int
    limit: int
    offset: int


class CleanupResponse(CamelModel):
    email_failures_deleted: int
    expired_tokens_deleted: int
    retention_days: int
    timestamp: datetime


class RetryOutcomeOut(CamelModel):
    failure_id: UUID
    status: str
    error: str | None = None

    @classmethod
    def from_outcome(cls, outcome: RetryOutcome) -> "RetryOutcomeOut":
        return cls(
            failure_id=outcome.failure_id,
            status=outcome.status.value,
            error=outcome.error,
        )
