"""Domain models for asynchronous generation jobs."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

import msgspec

from app.jobs.errors import InvalidJobRecord


class JobType(str, Enum):
  """Kinds of generation work a job can request."""

  GENERATE_QUIZ = "GENERATE_QUIZ"
  GENERATE_FLASHCARDS = "GENERATE_FLASHCARDS"
  GENERATE_MATERIAL = "GENERATE_MATERIAL"


class JobStatus(str, Enum):
  """Ledger states; a row only ever moves forward through these."""

  PENDING = "PENDING"
  PROCESSING = "PROCESSING"
  COMPLETED = "COMPLETED"
  FAILED = "FAILED"

  @property
  def rank(self) -> int:
    return _STATUS_RANK[self]

  @property
  def is_terminal(self) -> bool:
    return self in TERMINAL_STATUSES


_STATUS_RANK: dict[JobStatus, int] = {JobStatus.PENDING: 0, JobStatus.PROCESSING: 1, JobStatus.COMPLETED: 2, JobStatus.FAILED: 2}

TERMINAL_STATUSES: frozenset[JobStatus] = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})

ALLOWED_TRANSITIONS: frozenset[tuple[JobStatus, JobStatus]] = frozenset(
  {
    (JobStatus.PENDING, JobStatus.PROCESSING),
    (JobStatus.PENDING, JobStatus.FAILED),
    (JobStatus.PROCESSING, JobStatus.COMPLETED),
    (JobStatus.PROCESSING, JobStatus.FAILED),
  }
)


def can_transition(current: JobStatus, target: JobStatus) -> bool:
  """Return True when the ledger may move a row from current to target."""
  return (current, target) in ALLOWED_TRANSITIONS


@dataclass
class JobRecord:
  """Represents one row of the generation job ledger."""

  job_id: str
  parent_id: str
  job_type: JobType
  status: JobStatus
  created_at: str
  updated_at: str
  owner_id: str | None = None
  input_payload: dict[str, Any] = field(default_factory=dict)
  result_payload: dict[str, Any] | None = None
  error_message: str | None = None
  progress: float | None = None
  progress_message: str | None = None

  def to_row(self) -> dict[str, Any]:
    """Serialize to the wire/row shape used by change events."""
    return {
      "id": self.job_id,
      "parent_id": self.parent_id,
      "job_type": self.job_type.value,
      "status": self.status.value,
      "owner_id": self.owner_id,
      "input_payload": self.input_payload,
      "result_payload": self.result_payload,
      "error_message": self.error_message,
      "progress": self.progress,
      "progress_message": self.progress_message,
      "created_at": self.created_at,
      "updated_at": self.updated_at,
    }


class JobRow(msgspec.Struct):
  """Wire shape of a ledger row; decoding rejects values outside the closed enums."""

  id: str
  parent_id: str
  job_type: JobType
  status: JobStatus
  created_at: str
  updated_at: str
  owner_id: str | None = None
  input_payload: dict[str, Any] | None = None
  result_payload: dict[str, Any] | None = None
  error_message: str | None = None
  progress: float | None = None
  progress_message: str | None = None


def record_from_row(row: Mapping[str, Any]) -> JobRecord:
  """Validate a raw row (database or change event) into a JobRecord."""
  try:
    parsed = msgspec.convert(dict(row), type=JobRow)
  except msgspec.ValidationError as exc:
    raise InvalidJobRecord(f"Invalid job row: {exc}") from exc
  return JobRecord(
    job_id=parsed.id,
    parent_id=parsed.parent_id,
    job_type=parsed.job_type,
    status=parsed.status,
    created_at=parsed.created_at,
    updated_at=parsed.updated_at,
    owner_id=parsed.owner_id,
    input_payload=parsed.input_payload or {},
    result_payload=parsed.result_payload,
    error_message=parsed.error_message,
    progress=parsed.progress,
    progress_message=parsed.progress_message,
  )


def now_iso() -> str:
  """UTC timestamp with microseconds so successive writes sort in order."""
  return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
