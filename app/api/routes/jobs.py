from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status

from app.api.models import JobCreateRequest, JobCreateResponse, JobListResponse, JobStatusResponse
from app.config import Settings, get_settings
from app.services import jobs as jobs_service

router = APIRouter()


@router.post("", response_model=JobCreateResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_job(request: JobCreateRequest, background_tasks: BackgroundTasks, settings: Annotated[Settings, Depends(get_settings)]) -> JobCreateResponse:
  """Create a PENDING generation job and dispatch it to the runner."""
  return await jobs_service.create_job(request, settings, background_tasks)


@router.get("", response_model=JobListResponse)
async def list_jobs(parent_id: Annotated[str, Query(min_length=1)], settings: Annotated[Settings, Depends(get_settings)]) -> JobListResponse:
  return await jobs_service.list_jobs(parent_id, settings)


@router.get("/{job_id}", response_model=JobStatusResponse)
async def get_job_status(job_id: str, settings: Annotated[Settings, Depends(get_settings)]) -> JobStatusResponse:
  """Return the current ledger row for a job."""
  return await jobs_service.get_job_status(job_id, settings)
