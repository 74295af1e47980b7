"""Initial schema: user settings, briefing inputs, job history

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "user_settings",
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("account_email", sa.String(255), nullable=False, server_default=""),
        sa.Column("delivery_time", sa.String(5), nullable=False, server_default="08:00"),
        sa.Column("delivery_time_utc", sa.String(5), nullable=True),
        sa.Column("weekdays", sa.JSON(), nullable=False),
        sa.Column("weekdays_local", sa.JSON(), nullable=False),
        sa.Column("delivery_email", sa.String(1024), nullable=False, server_default=""),
        sa.Column("timezone", sa.String(64), nullable=False, server_default="UTC"),
        sa.Column("last_briefing_sent_date", sa.Date(), nullable=True),
        sa.Column("inbound_email_hash", sa.String(32), nullable=True),
        sa.Column("delivery_claim_token", sa.String(64), nullable=True),
        sa.Column("delivery_claimed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("user_id"),
    )
    op.create_index(
        "ix_user_settings_inbound_email_hash",
        "user_settings",
        ["inbound_email_hash"],
        unique=True,
    )

    op.create_table(
        "user_calendar_settings",
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("selected_calendars", sa.JSON(), nullable=False),
        sa.Column("days_in_advance", sa.Integer(), nullable=False, server_default="7"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["user_id"], ["user_settings.user_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("user_id"),
    )

    op.create_table(
        "user_context_snippets",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["user_id"], ["user_settings.user_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_user_context_snippets_user_id", "user_context_snippets", ["user_id"])

    op.create_table(
        "emails",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("from_email", sa.String(255), nullable=False, server_default=""),
        sa.Column("subject", sa.String(998), nullable=True),
        sa.Column("text_body", sa.Text(), nullable=True),
        sa.Column("stripped_text_reply", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["user_id"], ["user_settings.user_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_emails_user_id", "emails", ["user_id"])
    op.create_index("ix_emails_created_at", "emails", ["created_at"])

    op.create_table(
        "job_runs",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("job_id", sa.String(100), nullable=False),
        sa.Column("scheduled_at", sa.DateTime(), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=False),
        sa.Column("finished_at", sa.DateTime(), nullable=False),
        sa.Column("outcome", sa.String(20), nullable=False),
        sa.Column("processed", sa.Integer(), nullable=True),
        sa.Column("sent", sa.Integer(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_job_runs_job_id", "job_runs", ["job_id"])


def downgrade() -> None:
    op.drop_index("ix_job_runs_job_id", table_name="job_runs")
    op.drop_table("job_runs")
    op.drop_index("ix_emails_created_at", table_name="emails")
    op.drop_index("ix_emails_user_id", table_name="emails")
    op.drop_table("emails")
    op.drop_index("ix_user_context_snippets_user_id", table_name="user_context_snippets")
    op.drop_table("user_context_snippets")
    op.drop_table("user_calendar_settings")
    op.drop_index("ix_user_settings_inbound_email_hash", table_name="user_settings")
    op.drop_table("user_settings")
