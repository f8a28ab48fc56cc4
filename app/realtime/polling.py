"""Polling fallback for environments without a push channel."""

from __future__ import annotations

import asyncio
import contextlib
import logging

from app.jobs.models import JobRecord
from app.realtime.feed import ChangeListener
from app.storage.jobs_repo import JobsRepository

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 2.0


class _PollingSubscription:
  def __init__(self, task: asyncio.Task[None]) -> None:
    self._task = task

  async def close(self) -> None:
    if self._task.done():
      return
    self._task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
      await self._task


class PollingChangeFeed:
  """Re-read a parent's jobs on an interval and emit rows whose status or updated_at changed.

  Rows present when the subscription starts form the baseline and are not emitted.
  """

  def __init__(self, repo: JobsRepository, *, interval: float = DEFAULT_POLL_INTERVAL_SECONDS) -> None:
    if interval <= 0:
      raise ValueError("interval must be positive.")
    self._repo = repo
    self._interval = interval

  async def subscribe(self, parent_id: str, listener: ChangeListener) -> _PollingSubscription:
    baseline = {record.job_id: _fingerprint(record) for record in await self._repo.list_jobs_for_parent(parent_id)}
    task = asyncio.create_task(self._poll(parent_id, listener, baseline), name=f"poll-jobs-{parent_id}")
    return _PollingSubscription(task)

  async def _poll(self, parent_id: str, listener: ChangeListener, seen: dict[str, tuple[str, str]]) -> None:
    while True:
      await asyncio.sleep(self._interval)
      try:
        records = await self._repo.list_jobs_for_parent(parent_id)
      except Exception:  # noqa: BLE001
        logger.exception("Polling jobs for parent %s failed", parent_id)
        continue
      for record in records:
        fingerprint = _fingerprint(record)
        if seen.get(record.job_id) == fingerprint:
          continue
        seen[record.job_id] = fingerprint
        try:
          listener(record)
        except Exception:  # noqa: BLE001
          logger.exception("Change listener failed for job %s", record.job_id)


def _fingerprint(record: JobRecord) -> tuple[str, str]:
  return (record.status.value, record.updated_at)
