"""Shared fixtures; environment is set before any app module reads settings."""

from __future__ import annotations

import os

os.environ.setdefault("LECTERN_ALLOWED_ORIGINS", "http://localhost:5173")
os.environ.setdefault("LECTERN_TASK_SECRET", "test-task-secret")
os.environ.setdefault("LECTERN_LEDGER_BACKEND", "memory")
os.environ.setdefault("LECTERN_AI_API_KEY", "test-key")

from collections.abc import Callable  # noqa: E402
from typing import Any  # noqa: E402

import pytest  # noqa: E402

from app.ai.providers.base import ModelResponse, PromptPayload  # noqa: E402
from app.jobs.models import JobRecord, JobStatus, JobType, now_iso  # noqa: E402
from app.storage.memory_jobs_repo import InMemoryJobsRepository  # noqa: E402


class ScriptedProvider:
  """Provider fake that replays a script of responses and exceptions."""

  def __init__(self, outcomes: list[str | BaseException]) -> None:
    self._outcomes = list(outcomes)
    self.calls: list[PromptPayload] = []

  async def generate(self, payload: PromptPayload) -> ModelResponse:
    self.calls.append(payload)
    if not self._outcomes:
      raise AssertionError("ScriptedProvider ran out of outcomes")
    outcome = self._outcomes.pop(0)
    if isinstance(outcome, BaseException):
      raise outcome
    return ModelResponse(content=outcome)


@pytest.fixture
def anyio_backend():
  return "asyncio"


@pytest.fixture
def jobs_repo() -> InMemoryJobsRepository:
  return InMemoryJobsRepository()


@pytest.fixture
def make_job() -> Callable[..., JobRecord]:
  def _make(job_id: str = "job-1", *, parent_id: str = "lecture-1", job_type: JobType = JobType.GENERATE_QUIZ, input_payload: dict[str, Any] | None = None) -> JobRecord:
    timestamp = now_iso()
    return JobRecord(
      job_id=job_id,
      parent_id=parent_id,
      job_type=job_type,
      status=JobStatus.PENDING,
      created_at=timestamp,
      updated_at=timestamp,
      input_payload=input_payload if input_payload is not None else {"title": "Thermodynamics", "transcript": "Energy is conserved."},
    )

  return _make


@pytest.fixture
def scripted_provider() -> type[ScriptedProvider]:
  return ScriptedProvider
