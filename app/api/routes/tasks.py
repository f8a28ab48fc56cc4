from __future__ import annotations

import logging
import secrets
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, status
from pydantic import BaseModel, StrictStr

from app.config import Settings, get_settings
from app.services.jobs import run_job

router = APIRouter(prefix="/tasks", tags=["tasks"])
logger = logging.getLogger(__name__)


class TaskPayload(BaseModel):
  job_id: StrictStr


def _require_task_secret(settings: Settings, authorization: str | None, task_secret_header: str | None) -> None:
  # Internal task endpoints are deny-by-default.
  if not settings.task_secret:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Task authentication is not configured.")
  shared_secret_valid = secrets.compare_digest((task_secret_header or "").encode(), settings.task_secret.encode())
  bearer_valid = secrets.compare_digest((authorization or "").encode(), f"Bearer {settings.task_secret}".encode())
  if not shared_secret_valid and not bearer_valid:
    logger.warning("Unauthorized access attempt to /run-job")
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid task secret.")


@router.post("/run-job", status_code=status.HTTP_202_ACCEPTED)
async def run_job_task(
  payload: TaskPayload,
  background_tasks: BackgroundTasks,
  settings: Annotated[Settings, Depends(get_settings)],
  authorization: Annotated[str | None, Header()] = None,
  x_lectern_task_secret: Annotated[str | None, Header()] = None,
) -> dict[str, str]:
  """
  Accept a job for execution and run it after the response is sent.
  Duplicate deliveries are harmless: only the first claim of a PENDING job does any work.
  """
  _require_task_secret(settings, authorization, x_lectern_task_secret)
  logger.info("Received task for job %s", payload.job_id)
  background_tasks.add_task(run_job, payload.job_id, settings)
  return {"status": "accepted", "job_id": payload.job_id}
