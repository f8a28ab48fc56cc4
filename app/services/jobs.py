import logging

from fastapi import BackgroundTasks, HTTPException, status

from app.api.models import JobCreateRequest, JobCreateResponse, JobListResponse, JobStatusResponse
from app.config import Settings
from app.jobs.errors import JobNotFound
from app.jobs.models import JobRecord, JobStatus, now_iso
from app.jobs.runner import GenerationJobRunner
from app.jobs.subscriber import JobSubscriber
from app.services.tasks.factory import get_task_enqueuer
from app.storage.factory import _get_change_feed, _get_jobs_repo
from app.utils.ids import generate_job_id

logger = logging.getLogger(__name__)

_JOB_NOT_FOUND_MSG = "Job not found."
ENQUEUE_FAILED_MESSAGE = "Generation could not be started. Try again."
PROVIDER_NOT_CONFIGURED_MESSAGE = "AI provider is not configured."


async def create_job(request: JobCreateRequest, settings: Settings, background_tasks: BackgroundTasks) -> JobCreateResponse:
  """Persist a PENDING job and schedule its dispatch."""
  repo = _get_jobs_repo(settings)
  timestamp = now_iso()
  record = JobRecord(
    job_id=generate_job_id(),
    parent_id=request.parent_id,
    job_type=request.job_type,
    status=JobStatus.PENDING,
    created_at=timestamp,
    updated_at=timestamp,
    owner_id=request.owner_id,
    input_payload=dict(request.input_payload),
  )
  await repo.create_job(record)
  logger.info("Created job %s (%s) for parent %s", record.job_id, record.job_type.value, record.parent_id)
  trigger_job_processing(background_tasks, record.job_id, settings)
  return JobCreateResponse(job_id=record.job_id, status=record.status)


def trigger_job_processing(background_tasks: BackgroundTasks, job_id: str, settings: Settings) -> None:
  """Schedule dispatch via the configured task enqueuer once the response is sent."""
  enqueuer = get_task_enqueuer(settings)

  async def _dispatch() -> None:
    try:
      await enqueuer.enqueue(job_id)
    except Exception as exc:  # noqa: BLE001
      logger.error("Failed to enqueue job %s: %s", job_id, exc, exc_info=True)
      # Nothing will ever claim the row, so close it out instead of leaving it PENDING.
      repo = _get_jobs_repo(settings)
      await repo.fail_job(job_id, ENQUEUE_FAILED_MESSAGE)

  background_tasks.add_task(_dispatch)


async def get_job_status(job_id: str, settings: Settings) -> JobStatusResponse:
  repo = _get_jobs_repo(settings)
  record = await repo.get_job(job_id)
  if record is None:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_JOB_NOT_FOUND_MSG)
  return JobStatusResponse.from_record(record)


async def list_jobs(parent_id: str, settings: Settings) -> JobListResponse:
  repo = _get_jobs_repo(settings)
  records = await repo.list_jobs_for_parent(parent_id)
  return JobListResponse(parent_id=parent_id, jobs=[JobStatusResponse.from_record(record) for record in records])


async def run_job(job_id: str, settings: Settings) -> JobRecord | None:
  """Run one job through the generation runner; used by the task endpoint."""
  repo = _get_jobs_repo(settings)
  try:
    try:
      runner = GenerationJobRunner.from_settings(settings, jobs_repo=repo)
    except ValueError as exc:
      logger.error("Cannot run job %s: %s", job_id, exc)
      return (await repo.fail_job(job_id, PROVIDER_NOT_CONFIGURED_MESSAGE)).record
    return await runner.run(job_id)
  except JobNotFound:
    logger.warning("Task received for unknown job %s", job_id)
    return None


def build_job_subscriber(settings: Settings) -> JobSubscriber:
  """Subscriber over the change feed that matches the configured ledger and transport."""
  feed = _get_change_feed(settings, _get_jobs_repo(settings))
  return JobSubscriber(feed, watchdog_seconds=settings.watchdog_seconds)
