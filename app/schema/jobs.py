from __future__ import annotations

from sqlalchemy import CheckConstraint, Float, Index, String, Text, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base

_UTC_NOW = text("""to_char((now() AT TIME ZONE 'UTC'), 'YYYY-MM-DD"T"HH24:MI:SS.US"Z"')""")


class GenerationJob(Base):
  __tablename__ = "generation_jobs"
  __table_args__ = (
    CheckConstraint("status IN ('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED')", name="ck_generation_jobs_status"),
    CheckConstraint("job_type IN ('GENERATE_QUIZ', 'GENERATE_FLASHCARDS', 'GENERATE_MATERIAL')", name="ck_generation_jobs_job_type"),
    Index("ix_generation_jobs_status_updated_at", "status", "updated_at"),
  )

  id: Mapped[str] = mapped_column(String, primary_key=True)
  parent_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
  job_type: Mapped[str] = mapped_column(String, nullable=False)
  status: Mapped[str] = mapped_column(String, nullable=False)
  owner_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
  input_payload: Mapped[dict] = mapped_column(JSONB, nullable=False, server_default=text("'{}'::jsonb"))
  result_payload: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
  error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
  progress: Mapped[float | None] = mapped_column(Float, nullable=True)
  progress_message: Mapped[str | None] = mapped_column(Text, nullable=True)
  created_at: Mapped[str] = mapped_column(String, nullable=False, server_default=_UTC_NOW)
  updated_at: Mapped[str] = mapped_column(String, nullable=False, server_default=_UTC_NOW)
