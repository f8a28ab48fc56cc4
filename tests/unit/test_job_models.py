from __future__ import annotations

import json

import pytest

from app.jobs.errors import InvalidJobRecord
from app.jobs.models import JobStatus, JobType, can_transition, record_from_row
from app.realtime.feed import decode_change_event, encode_change_event


def _row(**overrides) -> dict:
  row = {
    "id": "job-1",
    "parent_id": "lecture-1",
    "job_type": "GENERATE_FLASHCARDS",
    "status": "FAILED",
    "error_message": "AI provider error (HTTP 500): boom",
    "created_at": "2026-01-01T00:00:00.000000Z",
    "updated_at": "2026-01-01T00:01:00.000000Z",
  }
  row.update(overrides)
  return row


@pytest.mark.parametrize(
  ("current", "target", "allowed"),
  [
    (JobStatus.PENDING, JobStatus.PROCESSING, True),
    (JobStatus.PENDING, JobStatus.FAILED, True),
    (JobStatus.PROCESSING, JobStatus.COMPLETED, True),
    (JobStatus.PROCESSING, JobStatus.FAILED, True),
    (JobStatus.PENDING, JobStatus.COMPLETED, False),
    (JobStatus.PROCESSING, JobStatus.PENDING, False),
    (JobStatus.COMPLETED, JobStatus.FAILED, False),
    (JobStatus.FAILED, JobStatus.PROCESSING, False),
  ],
)
def test_transition_table(current: JobStatus, target: JobStatus, allowed: bool) -> None:
  assert can_transition(current, target) is allowed
  if allowed:
    assert target.rank > current.rank


def test_terminal_statuses() -> None:
  assert JobStatus.COMPLETED.is_terminal
  assert JobStatus.FAILED.is_terminal
  assert not JobStatus.PROCESSING.is_terminal


def test_record_from_row_parses_enums_and_defaults() -> None:
  record = record_from_row(_row())
  assert record.job_type is JobType.GENERATE_FLASHCARDS
  assert record.status is JobStatus.FAILED
  assert record.input_payload == {}
  assert record.error_message.startswith("AI provider error")


@pytest.mark.parametrize("overrides", [{"status": "CANCELLED"}, {"job_type": "GENERATE_PODCAST"}, {"parent_id": None}])
def test_record_from_row_rejects_values_outside_the_enums(overrides: dict) -> None:
  with pytest.raises(InvalidJobRecord):
    record_from_row(_row(**overrides))


def test_change_event_carries_the_full_row() -> None:
  record = record_from_row(_row(result_payload={"cards": []}, progress=0.5))
  event = json.loads(encode_change_event(record))
  assert event["table"] == "generation_jobs"
  assert event["record"] == record.to_row()
  assert decode_change_event(encode_change_event(record)) == record


@pytest.mark.parametrize(
  "payload",
  [
    b"not json",
    json.dumps({"table": "other_table", "record": _row()}),
    json.dumps({"table": "generation_jobs", "record": _row(status="ARCHIVED")}),
  ],
)
def test_decode_change_event_rejects_bad_payloads(payload) -> None:
  with pytest.raises(InvalidJobRecord):
    decode_change_event(payload)
