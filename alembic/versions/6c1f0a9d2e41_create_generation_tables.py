"""Create generation job, credit and notification tables.

Revision ID: 6c1f0a9d2e41
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "6c1f0a9d2e41"
down_revision = None
branch_labels = None
depends_on = None

_UTC_NOW_ISO = sa.text("""to_char((now() AT TIME ZONE 'UTC'), 'YYYY-MM-DD"T"HH24:MI:SS"Z"')""")


def upgrade() -> None:
  """Upgrade schema."""
  op.create_table(
    "generation_jobs",
    sa.Column("job_id", sa.String(), nullable=False),
    sa.Column("owner_id", sa.String(), nullable=False),
    sa.Column("kind", sa.String(), nullable=False),
    sa.Column("title", sa.String(), nullable=False),
    sa.Column("prompt_or_style", sa.Text(), nullable=False),
    sa.Column("lyrics_or_description", sa.Text(), nullable=True),
    sa.Column("visibility", sa.String(), server_default="private", nullable=False),
    sa.Column("status", sa.String(), nullable=False),
    sa.Column("external_task_id", sa.String(), nullable=True),
    sa.Column("upstream_family", sa.String(), nullable=True),
    sa.Column("progress", sa.Integer(), server_default="0", nullable=False),
    sa.Column("status_message", sa.Text(), nullable=True),
    sa.Column("result_audio_url", sa.Text(), nullable=True),
    sa.Column("result_metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column("error_detail", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column("source_reference", sa.String(), nullable=True),
    sa.Column("created_at", sa.String(), server_default=_UTC_NOW_ISO, nullable=False),
    sa.Column("updated_at", sa.String(), server_default=_UTC_NOW_ISO, nullable=False),
    sa.Column("completed_at", sa.String(), nullable=True),
    sa.PrimaryKeyConstraint("job_id"),
  )
  op.create_index(op.f("ix_generation_jobs_owner_id"), "generation_jobs", ["owner_id"], unique=False)
  op.create_index(op.f("ix_generation_jobs_status"), "generation_jobs", ["status"], unique=False)
  op.create_index("ix_generation_jobs_owner_created", "generation_jobs", ["owner_id", "created_at"], unique=False)
  op.create_index("ix_generation_jobs_processing_task", "generation_jobs", ["external_task_id"], unique=False, postgresql_where=sa.text("status = 'processing'"))
  op.create_index("ix_generation_jobs_public_feed", "generation_jobs", ["completed_at"], unique=False, postgresql_where=sa.text("visibility = 'public' AND status = 'succeeded'"))

  op.create_table(
    "user_credits",
    sa.Column("user_id", sa.String(), nullable=False),
    sa.Column("balance", sa.Integer(), server_default="0", nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.CheckConstraint("balance >= 0", name="ck_user_credits_balance_non_negative"),
    sa.PrimaryKeyConstraint("user_id"),
  )

  op.create_table(
    "credit_transactions",
    sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
    sa.Column("user_id", sa.String(), nullable=False),
    sa.Column("type", sa.String(), nullable=False),
    sa.Column("amount", sa.Integer(), nullable=False),
    sa.Column("description", sa.Text(), nullable=False),
    sa.Column("job_reference", sa.String(), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.PrimaryKeyConstraint("id"),
  )
  op.create_index("ux_credit_transactions_consumption_job", "credit_transactions", ["job_reference"], unique=True, postgresql_where=sa.text("type = 'consumption'"))
  op.create_index("ix_credit_transactions_user_created", "credit_transactions", ["user_id", "created_at"], unique=False)

  op.create_table(
    "notifications",
    sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
    sa.Column("user_id", sa.String(), nullable=False),
    sa.Column("template_id", sa.String(), nullable=True),
    sa.Column("kind", sa.String(), nullable=False),
    sa.Column("title", sa.String(), nullable=False),
    sa.Column("body", sa.Text(), nullable=False),
    sa.Column("data_json", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    sa.Column("read", sa.Boolean(), server_default=sa.text("false"), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
    sa.PrimaryKeyConstraint("id"),
  )
  op.create_index(op.f("ix_notifications_user_id"), "notifications", ["user_id"], unique=False)
  op.create_index(op.f("ix_notifications_template_id"), "notifications", ["template_id"], unique=False)


def downgrade() -> None:
  """Downgrade schema."""
  op.drop_index(op.f("ix_notifications_template_id"), table_name="notifications")
  op.drop_index(op.f("ix_notifications_user_id"), table_name="notifications")
  op.drop_table("notifications")
  op.drop_index("ix_credit_transactions_user_created", table_name="credit_transactions")
  op.drop_index("ux_credit_transactions_consumption_job", table_name="credit_transactions")
  op.drop_table("credit_transactions")
  op.drop_table("user_credits")
  op.drop_index("ix_generation_jobs_public_feed", table_name="generation_jobs")
  op.drop_index("ix_generation_jobs_processing_task", table_name="generation_jobs")
  op.drop_index("ix_generation_jobs_owner_created", table_name="generation_jobs")
  op.drop_index(op.f("ix_generation_jobs_status"), table_name="generation_jobs")
  op.drop_index(op.f("ix_generation_jobs_owner_id"), table_name="generation_jobs")
  op.drop_table("generation_jobs")
