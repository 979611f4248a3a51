"""Dead man's switch schema - secrets, recipients, tokens, reminder jobs, email failures

Revision ID: 0001
Revises:
Create Date: 2026-10-16

Creates every table the disclosure/reminder engine reads or writes.
user_contact_methods is owned by the account surface; it is created here so
the engine's reads have a table to hit.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

ENUM_TYPES = {
    "secret_status_enum": ("active", "paused", "triggered"),
    "reminder_type_enum": ("7_days", "3_days", "24_hours", "12_hours", "1_hour", "critical"),
    "reminder_job_status_enum": ("sent", "failed", "cancelled"),
    "email_type_enum": ("reminder", "disclosure", "admin_notification", "verification"),
}


def _enum(name: str) -> sa.Enum:
    return sa.Enum(*ENUM_TYPES[name], name=name, create_type=False)


def upgrade() -> None:
    # Enable pgcrypto extension for gen_random_uuid()
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    # ==========================================================================
    # Enum types (guarded so a partial earlier run does not block)
    # ==========================================================================
    for name, values in ENUM_TYPES.items():
        labels = ", ".join(f"'{v}'" for v in values)
        op.execute(f"""
            DO $$
            BEGIN
                CREATE TYPE {name} AS ENUM ({labels});
            EXCEPTION
                WHEN duplicate_object THEN NULL;
            END $$;
        """)

    # ==========================================================================
    # secrets table
    # ==========================================================================
    op.create_table(
        "secrets",
        sa.Column(
            "id",
            sa.UUID(),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("check_in_days", sa.Integer(), nullable=False),
        sa.Column(
            "status",
            _enum("secret_status_enum"),
            server_default="active",
            nullable=False,
        ),
        sa.Column("server_share", sa.Text(), nullable=True),
        sa.Column("share_nonce", sa.Text(), nullable=True),
        sa.Column("last_check_in", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("next_check_in", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("triggered_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        # Constraint: check-in interval is at least one day
        sa.CheckConstraint("check_in_days >= 1", name="ck_secrets_check_in_days_positive"),
    )
    op.create_index("ix_secrets_user_id", "secrets", ["user_id"])
    op.create_index("ix_secrets_status_next_check_in", "secrets", ["status", "next_check_in"])

    # ==========================================================================
    # secret_recipients table
    # ==========================================================================
    op.create_table(
        "secret_recipients",
        sa.Column(
            "id",
            sa.UUID(),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("secret_id", sa.UUID(), nullable=False),
        sa.Column("position", sa.Integer(), server_default="0", nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("phone", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(
            ["secret_id"],
            ["secrets.id"],
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint(
            "secret_id", "position", name="uix_secret_recipients_secret_position"
        ),
    )

    # ==========================================================================
    # user_contact_methods table
    # ==========================================================================
    op.create_table(
        "user_contact_methods",
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("phone", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("user_id"),
    )

    # ==========================================================================
    # check_in_tokens table
    # ==========================================================================
    op.create_table(
        "check_in_tokens",
        sa.Column(
            "id",
            sa.UUID(),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("secret_id", sa.UUID(), nullable=False),
        sa.Column("token", sa.Text(), nullable=False),
        sa.Column("expires_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("used_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(
            ["secret_id"],
            ["secrets.id"],
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint("token", name="uq_check_in_tokens_token"),
    )
    op.create_index("ix_check_in_tokens_secret_id", "check_in_tokens", ["secret_id"])

    # ==========================================================================
    # reminder_jobs table
    # ==========================================================================
    op.create_table(
        "reminder_jobs",
        sa.Column(
            "id",
            sa.UUID(),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("secret_id", sa.UUID(), nullable=False),
        sa.Column("reminder_type", _enum("reminder_type_enum"), nullable=False),
        sa.Column("scheduled_for", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("status", _enum("reminder_job_status_enum"), nullable=False),
        sa.Column("sent_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("failed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(
            ["secret_id"],
            ["secrets.id"],
            ondelete="CASCADE",
        ),
    )
    op.create_index(
        "ix_reminder_jobs_secret_type_created",
        "reminder_jobs",
        ["secret_id", "reminder_type", "created_at"],
    )

    # ==========================================================================
    # email_failures table
    # ==========================================================================
    op.create_table(
        "email_failures",
        sa.Column(
            "id",
            sa.UUID(),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("email_type", _enum("email_type_enum"), nullable=False),
        sa.Column("provider", sa.Text(), nullable=False),
        sa.Column("recipient", sa.Text(), nullable=False),
        sa.Column("subject", sa.Text(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=False),
        sa.Column("retry_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("resolved_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_email_failures_lookup",
        "email_failures",
        ["email_type", "recipient", "subject"],
    )
    op.create_index("ix_email_failures_resolved_at", "email_failures", ["resolved_at"])


def downgrade() -> None:
    op.drop_index("ix_email_failures_resolved_at", table_name="email_failures")
    op.drop_index("ix_email_failures_lookup", table_name="email_failures")
    op.drop_table("email_failures")

    op.drop_index("ix_reminder_jobs_secret_type_created", table_name="reminder_jobs")
    op.drop_table("reminder_jobs")

    op.drop_index("ix_check_in_tokens_secret_id", table_name="check_in_tokens")
    op.drop_table("check_in_tokens")

    op.drop_table("user_contact_methods")
    op.drop_table("secret_recipients")

    op.drop_index("ix_secrets_status_next_check_in", table_name="secrets")
    op.drop_index("ix_secrets_user_id", table_name="secrets")
    op.drop_table("secrets")

    for name in reversed(list(ENUM_TYPES)):
        op.execute(f"DROP TYPE IF EXISTS {name}")
