"""In-memory job ledger for local mode and tests."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Any

from app.jobs.errors import AlreadyClaimed, InvalidTransition, JobNotFound
from app.jobs.models import JobRecord, JobStatus, can_transition, now_iso
from app.realtime.memory import InMemoryChangeFeed
from app.storage.jobs_repo import JobsRepository, TransitionResult

logger = logging.getLogger(__name__)


class InMemoryJobsRepository(JobsRepository):
  """Keep ledger rows in a dict guarded by one lock; every write is published to the feed."""

  def __init__(self, feed: InMemoryChangeFeed | None = None) -> None:
    self.feed = feed or InMemoryChangeFeed()
    self._rows: dict[str, JobRecord] = {}
    self._lock = asyncio.Lock()

  async def create_job(self, record: JobRecord) -> None:
    if record.status is not JobStatus.PENDING:
      raise ValueError(f"New jobs must start PENDING, got {record.status.value}.")
    async with self._lock:
      if record.job_id in self._rows:
        raise ValueError(f"Job {record.job_id} already exists.")
      self._rows[record.job_id] = record
    self.feed.publish(record)

  async def get_job(self, job_id: str) -> JobRecord | None:
    return self._rows.get(job_id)

  async def list_jobs_for_parent(self, parent_id: str) -> list[JobRecord]:
    rows = [record for record in self._rows.values() if record.parent_id == parent_id]
    return sorted(rows, key=lambda record: record.created_at)

  async def claim_job(self, job_id: str) -> JobRecord:
    async with self._lock:
      current = self._rows.get(job_id)
      if current is None:
        raise JobNotFound(job_id)
      if current.status is not JobStatus.PENDING:
        raise AlreadyClaimed(job_id, current.status.value)
      updated = replace(current, status=JobStatus.PROCESSING, updated_at=now_iso())
      self._rows[job_id] = updated
    self.feed.publish(updated)
    return updated

  async def complete_job(self, job_id: str, result_payload: dict[str, Any]) -> TransitionResult:
    return await self._finish(job_id, JobStatus.COMPLETED, result_payload=result_payload)

  async def fail_job(self, job_id: str, reason: str) -> TransitionResult:
    return await self._finish(job_id, JobStatus.FAILED, error_message=reason)

  async def update_progress(self, job_id: str, progress: float, message: str | None = None) -> JobRecord | None:
    async with self._lock:
      current = self._rows.get(job_id)
      if current is None or current.status is not JobStatus.PROCESSING:
        return None
      updated = replace(current, progress=max(0.0, min(1.0, progress)), progress_message=message, updated_at=now_iso())
      self._rows[job_id] = updated
    self.feed.publish(updated)
    return updated

  async def find_stale_processing(self, older_than: str, limit: int = 50) -> list[JobRecord]:
    stale = [record for record in self._rows.values() if record.status is JobStatus.PROCESSING and record.updated_at < older_than]
    return sorted(stale, key=lambda record: record.updated_at)[:limit]

  async def _finish(self, job_id: str, target: JobStatus, *, result_payload: dict[str, Any] | None = None, error_message: str | None = None) -> TransitionResult:
    async with self._lock:
      current = self._rows.get(job_id)
      if current is None:
        raise JobNotFound(job_id)
      if current.status.is_terminal:
        logger.info("Job %s already %s; skipping %s write", job_id, current.status.value, target.value)
        return TransitionResult(record=current, applied=False)
      if not can_transition(current.status, target):
        raise InvalidTransition(job_id, current.status.value, target.value)
      updated = replace(current, status=target, result_payload=result_payload, error_message=error_message, updated_at=now_iso())
      self._rows[job_id] = updated
    self.feed.publish(updated)
    return TransitionResult(record=updated, applied=True)
