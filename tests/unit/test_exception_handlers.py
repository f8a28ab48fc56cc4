"""Unit tests for API exception sanitization behavior."""

from __future__ import annotations

import json
from types import SimpleNamespace

import pytest

from app.core.exceptions import _sanitize_validation_errors, job_pipeline_exception_handler
from app.jobs.errors import AlreadyClaimed, InvalidJobRecord, InvalidTransition, JobNotFound
from app.jobs.models import JobStatus


def test_sanitize_validation_errors_removes_input_and_serializes_exception_ctx() -> None:
  """Ensure validation errors stay JSON-serializable and redact raw request payloads."""
  errors = [{"type": "value_error", "loc": ("body",), "msg": "Value error, too many keys.", "input": {"title": "Secret lecture"}, "ctx": {"error": ValueError("too many keys."), "input": {"title": "Secret lecture"}}}]
  sanitized = _sanitize_validation_errors(errors)
  assert "input" not in sanitized[0]
  assert sanitized[0]["ctx"]["error"] == "ValueError: too many keys."
  assert "input" not in sanitized[0]["ctx"]


def _request() -> SimpleNamespace:
  return SimpleNamespace(state=SimpleNamespace(request_id="req-1"), url=SimpleNamespace(path="/v1/jobs/job-1"))


@pytest.mark.anyio
@pytest.mark.parametrize(
  ("exc", "expected_status"),
  [
    (JobNotFound("job-1"), 404),
    (AlreadyClaimed("job-1", JobStatus.PROCESSING), 409),
    (InvalidTransition("job-1", JobStatus.COMPLETED, JobStatus.PROCESSING), 409),
    (InvalidJobRecord("bad row"), 500),
  ],
)
async def test_pipeline_errors_map_to_statuses(exc, expected_status: int) -> None:
  response = await job_pipeline_exception_handler(_request(), exc)
  assert response.status_code == expected_status
  body = json.loads(response.body)
  assert body["requestId"] == "req-1"
  if expected_status == 500:
    assert body["detail"] == "Internal Server Error"
