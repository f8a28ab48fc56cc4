from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

import pytest

from app.jobs.errors import ClientTimeout
from app.jobs.models import JobType
from app.jobs.subscriber import JobCallbacks, JobNotice, JobSubscriber

WATCHDOG = 0.05


@dataclass
class _Recorder:
  events: list[tuple] = field(default_factory=list)
  notices: list[JobNotice] = field(default_factory=list)

  def callbacks(self) -> JobCallbacks:
    return JobCallbacks(
      on_quiz_completed=lambda: self.events.append(("quiz_completed",)),
      on_quiz_failed=lambda message: self.events.append(("quiz_failed", message)),
      on_flashcards_completed=lambda: self.events.append(("flashcards_completed",)),
      on_flashcards_failed=lambda message: self.events.append(("flashcards_failed", message)),
      on_material_completed=lambda: self.events.append(("material_completed",)),
      on_material_failed=lambda message: self.events.append(("material_failed", message)),
      on_timeout=lambda timeout: self.events.append(("timeout", timeout)),
      on_notice=self.notices.append,
    )


async def _watch(jobs_repo, recorder: _Recorder, parent_id: str = "lecture-1"):
  return await JobSubscriber(jobs_repo.feed, watchdog_seconds=WATCHDOG).subscribe(parent_id, recorder.callbacks())


@pytest.mark.anyio
async def test_completion_within_watchdog_dispatches_once_without_timeout(jobs_repo, make_job) -> None:
  recorder = _Recorder()
  handle = await _watch(jobs_repo, recorder)
  await jobs_repo.create_job(make_job())
  await jobs_repo.claim_job("job-1")
  assert handle.armed_jobs == {"job-1"}

  await jobs_repo.complete_job("job-1", {"questions": [{"question": "Q"}]})
  await jobs_repo.complete_job("job-1", {"questions": [{"question": "Q"}]})
  await asyncio.sleep(WATCHDOG * 3)

  assert recorder.events == [("quiz_completed",)]
  assert [notice.kind for notice in recorder.notices] == ["completed"]
  assert handle.armed_jobs == frozenset()
  await handle.dispose()


@pytest.mark.anyio
async def test_processing_without_further_events_times_out_once(jobs_repo, make_job) -> None:
  recorder = _Recorder()
  handle = await _watch(jobs_repo, recorder)
  await jobs_repo.create_job(make_job(job_type=JobType.GENERATE_FLASHCARDS))
  await jobs_repo.claim_job("job-1")

  await asyncio.sleep(WATCHDOG * 4)

  assert len(recorder.events) == 1
  kind, timeout = recorder.events[0]
  assert kind == "timeout"
  assert timeout == ClientTimeout(job_id="job-1", job_type="GENERATE_FLASHCARDS", waited_seconds=WATCHDOG)
  assert [(notice.kind, notice.destructive) for notice in recorder.notices] == [("timeout", True)]
  await handle.dispose()


@pytest.mark.anyio
async def test_late_completion_after_timeout_still_dispatches(jobs_repo, make_job) -> None:
  recorder = _Recorder()
  handle = await _watch(jobs_repo, recorder)
  await jobs_repo.create_job(make_job(job_type=JobType.GENERATE_MATERIAL))
  await jobs_repo.claim_job("job-1")
  await asyncio.sleep(WATCHDOG * 3)

  await jobs_repo.complete_job("job-1", {"markdown": "# Done"})

  assert [event[0] for event in recorder.events] == ["timeout", "material_completed"]
  # The timeout is advisory only; the ledger is untouched by it.
  assert (await jobs_repo.get_job("job-1")).result_payload == {"markdown": "# Done"}
  await handle.dispose()


@pytest.mark.anyio
async def test_failure_passes_error_message_to_callback(jobs_repo, make_job) -> None:
  recorder = _Recorder()
  handle = await _watch(jobs_repo, recorder)
  await jobs_repo.create_job(make_job())
  await jobs_repo.claim_job("job-1")
  await jobs_repo.fail_job("job-1", "AI provider error (HTTP 500): boom")

  assert recorder.events == [("quiz_failed", "AI provider error (HTTP 500): boom")]
  notice = recorder.notices[-1]
  assert notice.title == "Error generating quiz"
  assert notice.description == "AI provider error (HTTP 500): boom"
  await handle.dispose()


@pytest.mark.anyio
async def test_quiz_completed_and_failed_scenario(jobs_repo, make_job) -> None:
  recorder = _Recorder()
  handle = await _watch(jobs_repo, recorder)
  await jobs_repo.create_job(make_job("ok"))
  await jobs_repo.create_job(make_job("bad"))
  await jobs_repo.claim_job("ok")
  await jobs_repo.claim_job("bad")
  await jobs_repo.complete_job("ok", {"questions": [{"question": "Q"}]})
  await jobs_repo.fail_job("bad", "Quiz data is invalid or empty.")
  await asyncio.sleep(WATCHDOG * 3)

  assert recorder.events == [("quiz_completed",), ("quiz_failed", "Quiz data is invalid or empty.")]
  await handle.dispose()


@pytest.mark.anyio
async def test_progress_heartbeat_rearms_the_watchdog(jobs_repo, make_job) -> None:
  recorder = _Recorder()
  handle = await JobSubscriber(jobs_repo.feed, watchdog_seconds=0.3).subscribe("lecture-1", recorder.callbacks())
  await jobs_repo.create_job(make_job())
  await jobs_repo.claim_job("job-1")
  for step in range(4):
    await asyncio.sleep(0.1)
    await jobs_repo.update_progress("job-1", step / 4, "working")
  await jobs_repo.complete_job("job-1", {"questions": [{"question": "Q"}]})

  assert recorder.events == [("quiz_completed",)]
  await handle.dispose()


@pytest.mark.anyio
async def test_dispose_clears_timers_and_stops_callbacks(jobs_repo, make_job) -> None:
  recorder = _Recorder()
  handle = await _watch(jobs_repo, recorder)
  await jobs_repo.create_job(make_job())
  await jobs_repo.claim_job("job-1")
  assert handle.armed_jobs == {"job-1"}

  await handle.dispose()
  await handle.dispose()

  assert handle.disposed
  assert handle.armed_jobs == frozenset()
  assert jobs_repo.feed.listener_count("lecture-1") == 0
  await jobs_repo.complete_job("job-1", {"questions": [{"question": "Q"}]})
  await asyncio.sleep(WATCHDOG * 3)
  assert recorder.events == []


@pytest.mark.anyio
async def test_handle_is_an_async_context_manager(jobs_repo, make_job) -> None:
  recorder = _Recorder()
  async with await _watch(jobs_repo, recorder) as handle:
    await jobs_repo.create_job(make_job())
    await jobs_repo.claim_job("job-1")
  assert handle.disposed
  await asyncio.sleep(WATCHDOG * 3)
  assert recorder.events == []


@pytest.mark.anyio
async def test_missing_callbacks_are_skipped(jobs_repo, make_job) -> None:
  handle = await JobSubscriber(jobs_repo.feed, watchdog_seconds=WATCHDOG).subscribe("lecture-1", JobCallbacks())
  await jobs_repo.create_job(make_job())
  await jobs_repo.claim_job("job-1")
  await jobs_repo.fail_job("job-1", "boom")
  await handle.dispose()


def test_watchdog_must_be_positive(jobs_repo) -> None:
  with pytest.raises(ValueError):
    JobSubscriber(jobs_repo.feed, watchdog_seconds=0)
