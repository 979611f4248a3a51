"""Send claims for overlapping scheduler runs, retry bookkeeping on email failures

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-16

reminder_jobs gains cycle_start and a unique key per (secret, tier, cycle) so
only one run can claim a reminder tier. secrets gains disclosure_claimed_at for
the disclosure claim. email_failures gains secret_id and last_retry_at for the
retry pass.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0002"
down_revision: str | None = "0001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # ADD VALUE cannot run inside the migration transaction on older Postgres
    with op.get_context().autocommit_block():
        op.execute(
            "ALTER TYPE reminder_job_status_enum ADD VALUE IF NOT EXISTS 'pending' BEFORE 'sent'"
        )

    # ==========================================================================
    # secrets
    # ==========================================================================
    op.add_column(
        "secrets",
        sa.Column("disclosure_claimed_at", sa.TIMESTAMP(timezone=True), nullable=True),
    )

    # ==========================================================================
    # reminder_jobs
    # ==========================================================================
    op.add_column(
        "reminder_jobs",
        sa.Column("cycle_start", sa.TIMESTAMP(timezone=True), nullable=True),
    )
    # Existing rows predate claims; created_at keeps them out of each other's way
    op.execute("UPDATE reminder_jobs SET cycle_start = created_at WHERE cycle_start IS NULL")
    op.alter_column("reminder_jobs", "cycle_start", nullable=False)

    op.drop_index("ix_reminder_jobs_secret_type_created", table_name="reminder_jobs")
    op.create_unique_constraint(
        "uq_reminder_jobs_cycle_tier",
        "reminder_jobs",
        ["secret_id", "reminder_type", "cycle_start"],
    )

    # ==========================================================================
    # email_failures
    # ==========================================================================
    op.add_column(
        "email_failures",
        sa.Column(
            "secret_id",
            sa.UUID(),
            sa.ForeignKey("secrets.id", ondelete="SET NULL"),
            nullable=True,
        ),
    )
    op.add_column(
        "email_failures",
        sa.Column("last_retry_at", sa.TIMESTAMP(timezone=True), nullable=True),
    )


def downgrade() -> None:
    op.drop_column("email_failures", "last_retry_at")
    op.drop_column("email_failures", "secret_id")

    op.drop_constraint("uq_reminder_jobs_cycle_tier", "reminder_jobs", type_="unique")
    op.create_index(
        "ix_reminder_jobs_secret_type_created",
        "reminder_jobs",
        ["secret_id", "reminder_type", "created_at"],
    )
    # Postgres cannot drop an enum label; unclaimed rows are removed instead
    op.execute("DELETE FROM reminder_jobs WHERE status = 'pending'")
    op.drop_column("reminder_jobs", "cycle_start")

    op.drop_column("secrets", "disclosure_claimed_at")
