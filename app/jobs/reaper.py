"""Fail PROCESSING jobs whose runner disappeared."""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta

from app.jobs.models import JobRecord
from app.storage.jobs_repo import JobsRepository

logger = logging.getLogger(__name__)

LEASE_EXPIRED_MESSAGE = "Job exceeded its processing lease"


def lease_cutoff(lease_seconds: float, *, now: datetime | None = None) -> str:
  """Timestamp before which a PROCESSING row counts as stranded."""
  moment = (now or datetime.now(UTC)) - timedelta(seconds=lease_seconds)
  return moment.strftime("%Y-%m-%dT%H:%M:%S.%fZ")


async def reap_stranded_jobs(jobs_repo: JobsRepository, *, lease_seconds: float, limit: int = 50, now: datetime | None = None) -> list[JobRecord]:
  """Fail stranded PROCESSING rows and return the rows this call actually failed.

  Rows are never reclaimed; a client that still wants the artifact submits a new job.
  """
  stale = await jobs_repo.find_stale_processing(lease_cutoff(lease_seconds, now=now), limit=limit)
  reaped: list[JobRecord] = []
  for record in stale:
    result = await jobs_repo.fail_job(record.job_id, LEASE_EXPIRED_MESSAGE)
    if result.applied:
      logger.warning("Job %s reaped after %ss without a heartbeat (last update %s)", record.job_id, lease_seconds, record.updated_at)
      reaped.append(result.record)
  return reaped


async def run_reaper_loop(jobs_repo: JobsRepository, *, lease_seconds: float, interval_seconds: float) -> None:
  """Sweep on a fixed interval until cancelled."""
  while True:
    try:
      reaped = await reap_stranded_jobs(jobs_repo, lease_seconds=lease_seconds)
    except Exception:  # noqa: BLE001
      logger.error("Stranded job sweep failed", exc_info=True)
    else:
      if reaped:
        logger.info("Stranded job sweep failed %d job(s)", len(reaped))
    await asyncio.sleep(interval_seconds)
