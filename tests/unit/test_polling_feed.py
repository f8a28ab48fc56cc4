from __future__ import annotations

import asyncio

import pytest

from app.jobs.models import JobStatus
from app.realtime.polling import PollingChangeFeed


@pytest.mark.anyio
async def test_polling_emits_changes_after_the_baseline(jobs_repo, make_job) -> None:
  await jobs_repo.create_job(make_job("existing"))
  seen: list[tuple[str, JobStatus]] = []
  feed = PollingChangeFeed(jobs_repo, interval=0.01)
  subscription = await feed.subscribe("lecture-1", lambda record: seen.append((record.job_id, record.status)))

  await asyncio.sleep(0.05)
  assert seen == []

  await jobs_repo.claim_job("existing")
  await asyncio.sleep(0.05)
  await jobs_repo.create_job(make_job("new"))
  await asyncio.sleep(0.05)

  assert ("existing", JobStatus.PROCESSING) in seen
  assert ("new", JobStatus.PENDING) in seen
  assert len(seen) == 2

  await subscription.close()
  await subscription.close()
  await jobs_repo.fail_job("existing", "boom")
  await asyncio.sleep(0.05)
  assert len(seen) == 2


def test_interval_must_be_positive(jobs_repo) -> None:
  with pytest.raises(ValueError):
    PollingChangeFeed(jobs_repo, interval=0)
