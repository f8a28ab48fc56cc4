"""Server-side execution of one generation job, end to end.

The runner writes the claim, progress heartbeats and exactly one terminal write to the ledger.
Provider calls and diagram repair never touch the ledger.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import Any

from app.ai.backoff import RetryPolicy, retry_with_backoff
from app.ai.diagram_repair import DiagramRepairService, ProviderDiagramFixer, RepairSummary
from app.ai.providers.base import GenerationProvider, ModelResponse, PromptPayload
from app.ai.providers.gateway import GatewayProvider
from app.config import Settings
from app.jobs.errors import AlreadyClaimed, InvalidContent, ProviderError, RateLimited
from app.jobs.handlers import JobHandlerRegistry, build_default_registry
from app.jobs.models import JobRecord, JobType
from app.storage.jobs_repo import JobsRepository, TransitionResult

logger = logging.getLogger(__name__)


class GenerationJobRunner:
  """Claim, generate, repair, validate and finish one job."""

  def __init__(
    self,
    *,
    jobs_repo: JobsRepository,
    provider: GenerationProvider,
    repair_service: DiagramRepairService,
    retry_policy: RetryPolicy | None = None,
    registry: JobHandlerRegistry | None = None,
    timeout_seconds: float = 300.0,
    model: str | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    rng: random.Random | None = None,
  ) -> None:
    self._jobs_repo = jobs_repo
    self._provider = provider
    self._repair_service = repair_service
    self._retry_policy = retry_policy or RetryPolicy()
    self._registry = registry or build_default_registry()
    self._timeout_seconds = timeout_seconds
    self._model = model
    self._sleep = sleep
    self._rng = rng

  @classmethod
  def from_settings(cls, settings: Settings, *, jobs_repo: JobsRepository) -> GenerationJobRunner:
    provider = GatewayProvider.from_settings(settings)
    repair_provider = GatewayProvider.from_settings(settings, model=settings.ai_repair_model)
    return cls(
      jobs_repo=jobs_repo,
      provider=provider,
      repair_service=DiagramRepairService(ProviderDiagramFixer(repair_provider)),
      retry_policy=RetryPolicy.from_settings(settings),
      registry=build_default_registry(material_min_chars=settings.material_min_chars),
      timeout_seconds=settings.job_timeout_seconds,
      model=settings.ai_model,
    )

  async def run(self, job_id: str) -> JobRecord | None:
    """Execute one job; duplicate triggers return the current row without side effects."""
    try:
      record = await self.claim_job(job_id)
    except AlreadyClaimed as exc:
      logger.info("Job %s skipped: already %s", job_id, exc.status)
      return await self._jobs_repo.get_job(job_id)

    logger.info("Job %s claimed (%s)", job_id, record.job_type.value)
    # The ceiling spans retries and diagram repair, not just the first provider call.
    try:
      async with asyncio.timeout(self._timeout_seconds):
        result_payload = await self._execute(record)
    except TimeoutError:
      reason = f"Generation timed out after {self._timeout_seconds:g} seconds."
    except (RateLimited, ProviderError, InvalidContent) as exc:
      reason = str(exc)
    except Exception as exc:  # noqa: BLE001
      logger.error("Job %s failed unexpectedly", job_id, exc_info=True)
      reason = f"Unexpected error during generation: {exc}"
    else:
      return (await self.complete_job(job_id, result_payload)).record

    # Exactly one terminal write per claim, success or failure.
    logger.warning("Job %s failed: %s", job_id, reason)
    return (await self.fail_job(job_id, reason)).record

  async def claim_job(self, job_id: str) -> JobRecord:
    """PENDING to PROCESSING; raises AlreadyClaimed or JobNotFound."""
    return await self._jobs_repo.claim_job(job_id)

  async def call_provider(self, payload: PromptPayload, *, job_id: str | None = None) -> ModelResponse:
    """Call the provider under the retry policy; raises RateLimited or ProviderError."""
    label = f"Job {job_id} provider call" if job_id else "Provider call"
    return await retry_with_backoff(lambda: self._provider.generate(payload), policy=self._retry_policy, sleep=self._sleep, rng=self._rng, label=label)

  async def repair_content(self, markdown: str, *, context: str = "", job_id: str | None = None) -> tuple[str, RepairSummary]:
    return await self._repair_service.repair(markdown, context, job_id=job_id)

  def validate_content(self, job_type: JobType, content: Any) -> Any:
    """Run the job type's structural checks; raises InvalidContent."""
    return self._registry.resolve(job_type).validate(content)

  async def complete_job(self, job_id: str, result_payload: dict[str, Any]) -> TransitionResult:
    result = await self._jobs_repo.complete_job(job_id, result_payload)
    if result.applied:
      logger.info("Job %s completed", job_id)
    return result

  async def fail_job(self, job_id: str, reason: str) -> TransitionResult:
    return await self._jobs_repo.fail_job(job_id, reason)

  async def update_progress(self, job_id: str, progress: float, message: str | None = None) -> JobRecord | None:
    return await self._jobs_repo.update_progress(job_id, progress, message)

  async def _execute(self, record: JobRecord) -> dict[str, Any]:
    # Heartbeats touch progress and message only; status changes happen in run().
    handler = self._registry.resolve(record.job_type)
    prompt = handler.build_prompt(record, model=self._model)

    await self.update_progress(record.job_id, 0.1, "Generating content")
    response = await self.call_provider(prompt, job_id=record.job_id)
    content = handler.parse(response.content)

    summary: RepairSummary | None = None
    if handler.repairs_diagrams:
      await self.update_progress(record.job_id, 0.7, "Checking diagrams")
      content, summary = await self.repair_content(content, context=str(record.input_payload.get("title") or ""), job_id=record.job_id)

    await self.update_progress(record.job_id, 0.9, "Validating content")
    content = self.validate_content(record.job_type, content)
    return handler.build_result(content, summary)
