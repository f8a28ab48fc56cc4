"""Request and response models for the HTTP surface."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictStr, field_validator

from app.ai.prompts import COUNT_FIELDS, requested_count
from app.jobs.errors import InvalidContent
from app.jobs.models import JobRecord, JobStatus, JobType

MAX_INPUT_PAYLOAD_KEYS = 50


class JobCreateRequest(BaseModel):
  """Request payload for creating a generation job."""

  parent_id: StrictStr = Field(min_length=1, description="Lecture the artifact belongs to.")
  job_type: JobType
  input_payload: dict[str, Any] = Field(default_factory=dict, description="Prompt inputs such as title, transcript and tags.")
  owner_id: StrictStr | None = None
  model_config = ConfigDict(extra="forbid")

  @field_validator("input_payload")
  @classmethod
  def validate_input_payload(cls, value: dict[str, Any]) -> dict[str, Any]:
    if len(value) > MAX_INPUT_PAYLOAD_KEYS:
      raise ValueError(f"input_payload accepts at most {MAX_INPUT_PAYLOAD_KEYS} keys.")
    # Reject counts here so a bad value is a 422, not a FAILED job.
    for field in COUNT_FIELDS:
      try:
        requested_count(value, field)
      except InvalidContent as exc:
        raise ValueError(str(exc)) from exc
    return value


class JobCreateResponse(BaseModel):
  """Response payload for job creation."""

  job_id: StrictStr
  status: JobStatus


class JobStatusResponse(BaseModel):
  """Status payload for a generation job."""

  job_id: StrictStr
  parent_id: StrictStr
  job_type: JobType
  status: JobStatus
  owner_id: StrictStr | None = None
  result_payload: dict[str, Any] | None = None
  error_message: StrictStr | None = None
  progress: float | None = None
  progress_message: StrictStr | None = None
  created_at: StrictStr
  updated_at: StrictStr

  @classmethod
  def from_record(cls, record: JobRecord) -> JobStatusResponse:
    return cls(
      job_id=record.job_id,
      parent_id=record.parent_id,
      job_type=record.job_type,
      status=record.status,
      owner_id=record.owner_id,
      result_payload=record.result_payload,
      error_message=record.error_message,
      progress=record.progress,
      progress_message=record.progress_message,
      created_at=record.created_at,
      updated_at=record.updated_at,
    )


class JobListResponse(BaseModel):
  parent_id: StrictStr
  jobs: list[JobStatusResponse]
