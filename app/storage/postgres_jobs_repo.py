"""Postgres-backed job ledger using SQLAlchemy.

Status changes are single conditional UPDATE statements, and each write publishes its change event
with pg_notify inside the same transaction.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session_factory
from app.jobs.errors import AlreadyClaimed, InvalidTransition, JobNotFound
from app.jobs.models import JobRecord, JobStatus, now_iso, record_from_row
from app.realtime.feed import encode_change_event
from app.schema.jobs import GenerationJob
from app.storage.jobs_repo import JobsRepository, TransitionResult

logger = logging.getLogger(__name__)

# Postgres rejects NOTIFY payloads of 8000 bytes or more.
MAX_NOTIFY_BYTES = 7999


class PostgresJobsRepository(JobsRepository):
  """Persist generation jobs to Postgres and notify listeners on every write."""

  def __init__(self, channel: str = "generation_jobs") -> None:
    self._channel = channel
    self._session_factory = get_session_factory()
    if self._session_factory is None:
      raise RuntimeError("Database not initialized")

  async def create_job(self, record: JobRecord) -> None:
    if record.status is not JobStatus.PENDING:
      raise ValueError(f"New jobs must start PENDING, got {record.status.value}.")
    async with self._session_factory() as session:
      session.add(
        GenerationJob(
          id=record.job_id,
          parent_id=record.parent_id,
          job_type=record.job_type.value,
          status=record.status.value,
          owner_id=record.owner_id,
          input_payload=record.input_payload,
          created_at=record.created_at,
          updated_at=record.updated_at,
        )
      )
      await session.flush()
      await self._notify(session, record)
      await session.commit()

  async def get_job(self, job_id: str) -> JobRecord | None:
    async with self._session_factory() as session:
      row = await session.get(GenerationJob, job_id)
      if row is None:
        return None
      return self._model_to_record(row)

  async def list_jobs_for_parent(self, parent_id: str) -> list[JobRecord]:
    async with self._session_factory() as session:
      stmt = select(GenerationJob).where(GenerationJob.parent_id == parent_id).order_by(GenerationJob.created_at.asc())
      rows = (await session.execute(stmt)).scalars().all()
      return [self._model_to_record(row) for row in rows]

  async def claim_job(self, job_id: str) -> JobRecord:
    async with self._session_factory() as session:
      stmt = (
        update(GenerationJob)
        .where(GenerationJob.id == job_id, GenerationJob.status == JobStatus.PENDING.value)
        .values(status=JobStatus.PROCESSING.value, updated_at=now_iso())
        .returning(GenerationJob)
        .execution_options(synchronize_session=False)
      )
      row = (await session.execute(stmt)).scalar_one_or_none()
      if row is None:
        await session.rollback()
        current = await session.get(GenerationJob, job_id)
        if current is None:
          raise JobNotFound(job_id)
        raise AlreadyClaimed(job_id, current.status)
      record = self._model_to_record(row)
      await self._notify(session, record)
      await session.commit()
      return record

  async def complete_job(self, job_id: str, result_payload: dict[str, Any]) -> TransitionResult:
    return await self._finish(job_id, JobStatus.COMPLETED, allowed_from=(JobStatus.PROCESSING,), values={"result_payload": result_payload})

  async def fail_job(self, job_id: str, reason: str) -> TransitionResult:
    return await self._finish(job_id, JobStatus.FAILED, allowed_from=(JobStatus.PENDING, JobStatus.PROCESSING), values={"error_message": reason})

  async def update_progress(self, job_id: str, progress: float, message: str | None = None) -> JobRecord | None:
    async with self._session_factory() as session:
      stmt = (
        update(GenerationJob)
        .where(GenerationJob.id == job_id, GenerationJob.status == JobStatus.PROCESSING.value)
        .values(progress=max(0.0, min(1.0, progress)), progress_message=message, updated_at=now_iso())
        .returning(GenerationJob)
        .execution_options(synchronize_session=False)
      )
      row = (await session.execute(stmt)).scalar_one_or_none()
      if row is None:
        await session.rollback()
        return None
      record = self._model_to_record(row)
      await self._notify(session, record)
      await session.commit()
      return record

  async def find_stale_processing(self, older_than: str, limit: int = 50) -> list[JobRecord]:
    async with self._session_factory() as session:
      stmt = (
        select(GenerationJob)
        .where(GenerationJob.status == JobStatus.PROCESSING.value, GenerationJob.updated_at < older_than)
        .order_by(GenerationJob.updated_at.asc())
        .limit(limit)
      )
      rows = (await session.execute(stmt)).scalars().all()
      return [self._model_to_record(row) for row in rows]

  async def _finish(self, job_id: str, target: JobStatus, *, allowed_from: tuple[JobStatus, ...], values: dict[str, Any]) -> TransitionResult:
    async with self._session_factory() as session:
      stmt = (
        update(GenerationJob)
        .where(GenerationJob.id == job_id, GenerationJob.status.in_([status.value for status in allowed_from]))
        .values(status=target.value, updated_at=now_iso(), **values)
        .returning(GenerationJob)
        .execution_options(synchronize_session=False)
      )
      row = (await session.execute(stmt)).scalar_one_or_none()
      if row is not None:
        record = self._model_to_record(row)
        await self._notify(session, record)
        await session.commit()
        return TransitionResult(record=record, applied=True)

      await session.rollback()
      current_row = await session.get(GenerationJob, job_id)
      if current_row is None:
        raise JobNotFound(job_id)
      current = self._model_to_record(current_row)
      if current.status.is_terminal:
        logger.info("Job %s already %s; skipping %s write", job_id, current.status.value, target.value)
        return TransitionResult(record=current, applied=False)
      raise InvalidTransition(job_id, current.status.value, target.value)

  async def _notify(self, session: AsyncSession, record: JobRecord) -> None:
    payload = encode_change_event(record)
    if len(payload) > MAX_NOTIFY_BYTES:
      # Listeners re-read the row when they need the bulky payloads.
      payload = encode_change_event(replace(record, input_payload={}, result_payload=None))
    await session.execute(select(func.pg_notify(self._channel, payload.decode())))

  def _model_to_record(self, row: GenerationJob) -> JobRecord:
    return record_from_row(
      {
        "id": row.id,
        "parent_id": row.parent_id,
        "job_type": row.job_type,
        "status": row.status,
        "owner_id": row.owner_id,
        "input_payload": row.input_payload,
        "result_payload": row.result_payload,
        "error_message": row.error_message,
        "progress": row.progress,
        "progress_message": row.progress_message,
        "created_at": row.created_at,
        "updated_at": row.updated_at,
      }
    )
