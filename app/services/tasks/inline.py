from __future__ import annotations

import asyncio
import logging

from app.config import Settings
from app.services.tasks.interface import TaskEnqueuer

logger = logging.getLogger(__name__)

# Strong references until each task finishes so none is garbage collected mid-run.
_RUNNING: set[asyncio.Task[object]] = set()


class InlineEnqueuer(TaskEnqueuer):
  """Run the job on the current event loop instead of going through HTTP."""

  def __init__(self, settings: Settings) -> None:
    self.settings = settings

  async def enqueue(self, job_id: str) -> None:
    from app.services.jobs import run_job

    task = asyncio.create_task(run_job(job_id, self.settings), name=f"run-job-{job_id}")
    _RUNNING.add(task)
    task.add_done_callback(_RUNNING.discard)
    logger.info("Scheduled job %s inline", job_id)
