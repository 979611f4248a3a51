"""Scheduler endpoint response schemas."""

from datetime import datetime

from deadswitch.schemas.base import CamelModel
from deadswitch.services.email_retry import RetrySummary
from deadswitch.services.scheduler import SchedulerSummary


class ProcessRemindersResponse(CamelModel):
    processed: int
    reminders_processed: int
    reminders_sent: int
    reminders_failed: int
    disclosures_triggered: int
    disclosures_failed: int
    disclosures_skipped: int
    timed_out: bool
    run_id: str
    timestamp: datetime

    @classmethod
    def from_summary(cls, summary: SchedulerSummary) -> "ProcessRemindersResponse":
        return cls(
            processed=summary.processed,
            reminders_processed=summary.reminders_processed,
            reminders_sent=summary.reminders_sent,
            reminders_failed=summary.reminders_failed,
            disclosures_triggered=summary.disclosures_triggered,
            disclosures_failed=summary.disclosures_failed,
            disclosures_skipped=summary.disclosures_skipped,
            timed_out=summary.timed_out,
            run_id=summary.run_id,
            timestamp=summary.timestamp,
        )


class CheckSecretsResponse(CamelModel):
    """Disclosure-only pass: {processed, triggered, timestamp}."""

    processed: int
    triggered: int
    timestamp: datetime

    @classmethod
    def from_summary(cls, summary: SchedulerSummary) -> "CheckSecretsResponse":
        return cls(
            processed=summary.processed,
            triggered=summary.disclosures_triggered,
            timestamp=summary.timestamp,
        )


class RetryFailuresResponse(CamelModel):
    """Failure retry pass counts."""

    total: int
    successful: int
    failed: int
    permanent: int
    exhausted: int
    obsolete: int
    skipped: int
    errors: int
    timestamp: datetime

    @classmethod
    def from_summary(cls, summary: RetrySummary) -> "RetryFailuresResponse":
        return cls(
            total=summary.total,
            successful=summary.successful,
            failed=summary.failed,
            permanent=summary.permanent,
            exhausted=summary.exhausted,
            obsolete=summary.obsolete,
            skipped=summary.skipped,
            errors=summary.errors,
            timestamp=summary.timestamp,
        )
