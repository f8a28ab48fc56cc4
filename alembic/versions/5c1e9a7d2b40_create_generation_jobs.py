"""Create generation_jobs ledger.

Revision ID: 5c1e9a7d2b40
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "5c1e9a7d2b40"
down_revision = None
branch_labels = None
depends_on = None

_UTC_NOW = sa.text("""to_char((now() AT TIME ZONE 'UTC'), 'YYYY-MM-DD"T"HH24:MI:SS.US"Z"')""")


def upgrade() -> None:
  """Upgrade schema."""
  op.create_table(
    "generation_jobs",
    sa.Column("id", sa.String(), nullable=False),
    sa.Column("parent_id", sa.String(), nullable=False),
    sa.Column("job_type", sa.String(), nullable=False),
    sa.Column("status", sa.String(), nullable=False),
    sa.Column("owner_id", sa.String(), nullable=True),
    sa.Column("input_payload", postgresql.JSONB(astext_type=sa.Text()), server_default=sa.text("'{}'::jsonb"), nullable=False),
    sa.Column("result_payload", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column("error_message", sa.Text(), nullable=True),
    sa.Column("progress", sa.Float(), nullable=True),
    sa.Column("progress_message", sa.Text(), nullable=True),
    sa.Column("created_at", sa.String(), server_default=_UTC_NOW, nullable=False),
    sa.Column("updated_at", sa.String(), server_default=_UTC_NOW, nullable=False),
    sa.CheckConstraint("status IN ('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED')", name="ck_generation_jobs_status"),
    sa.CheckConstraint("job_type IN ('GENERATE_QUIZ', 'GENERATE_FLASHCARDS', 'GENERATE_MATERIAL')", name="ck_generation_jobs_job_type"),
    sa.PrimaryKeyConstraint("id"),
  )
  op.create_index(op.f("ix_generation_jobs_parent_id"), "generation_jobs", ["parent_id"], unique=False)
  op.create_index(op.f("ix_generation_jobs_owner_id"), "generation_jobs", ["owner_id"], unique=False)
  op.create_index("ix_generation_jobs_status_updated_at", "generation_jobs", ["status", "updated_at"], unique=False)


def downgrade() -> None:
  """Downgrade schema."""
  op.drop_index("ix_generation_jobs_status_updated_at", table_name="generation_jobs")
  op.drop_index(op.f("ix_generation_jobs_owner_id"), table_name="generation_jobs")
  op.drop_index(op.f("ix_generation_jobs_parent_id"), table_name="generation_jobs")
  op.drop_table("generation_jobs")
