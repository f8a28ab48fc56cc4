from __future__ import annotations

import asyncio
import json

import pytest

from app.ai.backoff import RetryPolicy
from app.ai.diagram_repair import DiagramRepairService
from app.ai.providers.base import DiagramFixRequest, DiagramFixResponse, ModelResponse, PromptPayload, ProviderHTTPError
from app.jobs.errors import AlreadyClaimed, JobNotFound
from app.jobs.handlers import build_default_registry
from app.jobs.models import JobStatus, JobType
from app.jobs.runner import GenerationJobRunner

QUIZ_JSON = json.dumps({"questions": [{"question": "What does the first law state?", "options": {"A": "Energy is conserved"}, "correct_answer": "A"}]})
MATERIAL = "# Heat engines\n\n" + "A heat engine converts heat into work between two reservoirs. " * 10 + "\n\n```mermaid\nA -> B broken\n```\n"


class _Fixer:
  def __init__(self) -> None:
    self.requests: list[DiagramFixRequest] = []

  async def fix(self, request: DiagramFixRequest) -> DiagramFixResponse:
    self.requests.append(request)
    return DiagramFixResponse(fixed_code="flowchart LR\n  Hot --> Work")


class _NoSleep:
  def __init__(self) -> None:
    self.delays: list[float] = []

  async def __call__(self, delay: float) -> None:
    self.delays.append(delay)


def _runner(jobs_repo, provider, *, fixer=None, timeout_seconds: float = 300.0, sleep=None) -> GenerationJobRunner:
  return GenerationJobRunner(
    jobs_repo=jobs_repo,
    provider=provider,
    repair_service=DiagramRepairService(fixer or _Fixer()),
    retry_policy=RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=4.0, jitter=0.0),
    registry=build_default_registry(material_min_chars=200),
    timeout_seconds=timeout_seconds,
    sleep=sleep or _NoSleep(),
  )


@pytest.mark.anyio
async def test_rate_limit_then_success_completes(jobs_repo, make_job, scripted_provider) -> None:
  await jobs_repo.create_job(make_job())
  provider = scripted_provider([ProviderHTTPError(429, "slow down"), QUIZ_JSON])
  sleep = _NoSleep()

  record = await _runner(jobs_repo, provider, sleep=sleep).run("job-1")

  assert record.status is JobStatus.COMPLETED
  assert record.result_payload["questions"][0]["question"] == "What does the first law state?"
  assert record.error_message is None
  assert len(provider.calls) == 2
  assert sleep.delays == [1.0]


@pytest.mark.anyio
async def test_persistent_rate_limit_fails_with_reason(jobs_repo, make_job, scripted_provider) -> None:
  await jobs_repo.create_job(make_job())
  provider = scripted_provider([ProviderHTTPError(429, "slow down")] * 3)

  record = await _runner(jobs_repo, provider).run("job-1")

  assert record.status is JobStatus.FAILED
  assert "rate limited" in record.error_message
  assert len(provider.calls) == 3
  assert record.result_payload is None


@pytest.mark.anyio
async def test_fatal_provider_error_is_not_retried(jobs_repo, make_job, scripted_provider) -> None:
  await jobs_repo.create_job(make_job())
  provider = scripted_provider([ProviderHTTPError(401, "bad key")])

  record = await _runner(jobs_repo, provider).run("job-1")

  assert record.status is JobStatus.FAILED
  assert "HTTP 401" in record.error_message
  assert len(provider.calls) == 1


@pytest.mark.anyio
async def test_invalid_content_fails_the_job(jobs_repo, make_job, scripted_provider) -> None:
  await jobs_repo.create_job(make_job())
  provider = scripted_provider([json.dumps({"questions": []})])

  record = await _runner(jobs_repo, provider).run("job-1")

  assert record.status is JobStatus.FAILED
  assert record.error_message == "Quiz data is invalid or empty."


@pytest.mark.anyio
async def test_material_runs_diagram_repair_before_completing(jobs_repo, make_job, scripted_provider) -> None:
  await jobs_repo.create_job(make_job(job_type=JobType.GENERATE_MATERIAL))
  fixer = _Fixer()
  provider = scripted_provider([MATERIAL])

  record = await _runner(jobs_repo, provider, fixer=fixer).run("job-1")

  assert record.status is JobStatus.COMPLETED
  assert record.result_payload["diagram_repair"] == {"fixed": 1, "skipped": 0, "failed": 0, "total": 1}
  assert "```mermaid\nflowchart LR\n  Hot --> Work\n```" in record.result_payload["markdown"]
  assert len(fixer.requests) == 1
  assert "Thermodynamics" in fixer.requests[0].context


@pytest.mark.anyio
async def test_quiz_output_never_goes_through_repair(jobs_repo, make_job, scripted_provider) -> None:
  await jobs_repo.create_job(make_job())
  fixer = _Fixer()
  await _runner(jobs_repo, scripted_provider([QUIZ_JSON]), fixer=fixer).run("job-1")
  assert fixer.requests == []


@pytest.mark.anyio
async def test_duplicate_trigger_is_a_silent_no_op(jobs_repo, make_job, scripted_provider) -> None:
  await jobs_repo.create_job(make_job())
  provider = scripted_provider([QUIZ_JSON])
  runner = _runner(jobs_repo, provider)

  first = await runner.run("job-1")
  second = await runner.run("job-1")

  assert first.status is JobStatus.COMPLETED
  assert second == first
  assert len(provider.calls) == 1


@pytest.mark.anyio
async def test_claim_job_raises_for_non_pending_rows(jobs_repo, make_job, scripted_provider) -> None:
  await jobs_repo.create_job(make_job())
  runner = _runner(jobs_repo, scripted_provider([]))
  await runner.claim_job("job-1")
  with pytest.raises(AlreadyClaimed):
    await runner.claim_job("job-1")
  with pytest.raises(JobNotFound):
    await runner.run("missing")


@pytest.mark.anyio
async def test_wall_clock_ceiling_fails_the_job(jobs_repo, make_job) -> None:
  class _HangingProvider:
    async def generate(self, payload: PromptPayload) -> ModelResponse:
      await asyncio.sleep(10)
      return ModelResponse(content=QUIZ_JSON)

  await jobs_repo.create_job(make_job())
  record = await _runner(jobs_repo, _HangingProvider(), timeout_seconds=0.05).run("job-1")

  assert record.status is JobStatus.FAILED
  assert "timed out" in record.error_message


@pytest.mark.anyio
async def test_unexpected_errors_still_reach_a_terminal_state(jobs_repo, make_job, scripted_provider) -> None:
  await jobs_repo.create_job(make_job())
  record = await _runner(jobs_repo, scripted_provider([KeyError("surprise")])).run("job-1")
  assert record.status is JobStatus.FAILED
  assert "Unexpected error" in record.error_message


@pytest.mark.anyio
async def test_runner_writes_progress_heartbeats(jobs_repo, make_job, scripted_provider) -> None:
  statuses: list[tuple[JobStatus, float | None]] = []
  await jobs_repo.feed.subscribe("lecture-1", lambda record: statuses.append((record.status, record.progress)))
  await jobs_repo.create_job(make_job())

  await _runner(jobs_repo, scripted_provider([QUIZ_JSON])).run("job-1")

  assert statuses[0] == (JobStatus.PENDING, None)
  assert statuses[1] == (JobStatus.PROCESSING, None)
  assert [status for status, _ in statuses[2:-1]] == [JobStatus.PROCESSING] * (len(statuses) - 3)
  assert statuses[-1][0] is JobStatus.COMPLETED


@pytest.mark.anyio
async def test_terminal_writes_through_the_runner_are_idempotent(jobs_repo, make_job, scripted_provider) -> None:
  await jobs_repo.create_job(make_job())
  runner = _runner(jobs_repo, scripted_provider([]))
  await runner.claim_job("job-1")
  failed = await runner.fail_job("job-1", "first reason")
  repeated = await runner.fail_job("job-1", "second reason")
  completed = await runner.complete_job("job-1", {"questions": []})
  assert failed.applied
  assert not repeated.applied
  assert not completed.applied
  assert (await jobs_repo.get_job("job-1")).error_message == "first reason"


@pytest.mark.anyio
async def test_unusable_item_count_fails_without_calling_the_provider(jobs_repo, make_job, scripted_provider) -> None:
  await jobs_repo.create_job(make_job(input_payload={"title": "Thermodynamics", "question_count": "ten"}))
  provider = scripted_provider([])

  record = await _runner(jobs_repo, provider).run("job-1")

  assert record.status is JobStatus.FAILED
  assert record.error_message == "question_count must be a whole number between 1 and 100."
  assert provider.calls == []
