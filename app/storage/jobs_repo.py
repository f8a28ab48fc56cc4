"""Storage interfaces for the generation job ledger."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from app.jobs.models import JobRecord


@dataclass(frozen=True)
class TransitionResult:
  """Outcome of a terminal write; applied is False when the row was already terminal."""

  record: JobRecord
  applied: bool


class JobsRepository(Protocol):
  """Repository contract for the job ledger.

  Every write that changes a row publishes a change event carrying the full row.
  """

  async def create_job(self, record: JobRecord) -> None:
    """Persist a new PENDING job record."""

  async def get_job(self, job_id: str) -> JobRecord | None:
    """Fetch a job by identifier."""

  async def list_jobs_for_parent(self, parent_id: str) -> list[JobRecord]:
    """Return the jobs of one parent resource, oldest first."""

  async def claim_job(self, job_id: str) -> JobRecord:
    """Move a PENDING row to PROCESSING; raise JobNotFound or AlreadyClaimed otherwise."""

  async def complete_job(self, job_id: str, result_payload: dict[str, Any]) -> TransitionResult:
    """Write COMPLETED with its result; a no-op on terminal rows."""

  async def fail_job(self, job_id: str, reason: str) -> TransitionResult:
    """Write FAILED with a reason; a no-op on terminal rows."""

  async def update_progress(self, job_id: str, progress: float, message: str | None = None) -> JobRecord | None:
    """Record a heartbeat on a PROCESSING row; returns None when the row is not PROCESSING."""

  async def find_stale_processing(self, older_than: str, limit: int = 50) -> list[JobRecord]:
    """Return PROCESSING rows whose updated_at is older than the given timestamp."""
