"""Per-job-type generation handlers and their registry."""

from __future__ import annotations

import json
from typing import Any, Protocol

from app.ai.diagram_repair import RepairSummary
from app.ai.json_parser import parse_json_with_fallback, sanitize_json_text
from app.ai.prompts import build_generation_prompt
from app.ai.providers.base import PromptPayload
from app.jobs.errors import InvalidContent
from app.jobs.models import JobRecord, JobType
from app.jobs.validation import validate_flashcards, validate_material, validate_quiz


class JobHandler(Protocol):
  """Contract for turning one job type's provider output into a result payload."""

  job_type: JobType
  repairs_diagrams: bool

  def build_prompt(self, record: JobRecord, *, model: str | None = None) -> PromptPayload:
    """Build the provider prompt from the job input."""

  def parse(self, raw: str) -> Any:
    """Turn raw provider text into content; raise InvalidContent when unreadable."""

  def validate(self, content: Any) -> Any:
    """Return the content when it is structurally acceptable; raise InvalidContent otherwise."""

  def build_result(self, content: Any, repair: RepairSummary | None) -> dict[str, Any]:
    """Shape the payload written with COMPLETED."""


class _JsonHandler:
  repairs_diagrams = False
  label = "content"

  def __init__(self, job_type: JobType) -> None:
    self.job_type = job_type

  def build_prompt(self, record: JobRecord, *, model: str | None = None) -> PromptPayload:
    return build_generation_prompt(self.job_type, record.input_payload, model=model)

  def parse(self, raw: str) -> Any:
    cleaned = sanitize_json_text(raw or "")
    if not cleaned:
      raise InvalidContent(f"AI returned empty {self.label} data.")
    try:
      return parse_json_with_fallback(cleaned)
    except json.JSONDecodeError as exc:
      raise InvalidContent(f"AI returned unreadable {self.label} data: {exc.msg}.") from exc

  def build_result(self, content: Any, repair: RepairSummary | None) -> dict[str, Any]:
    return content


class QuizHandler(_JsonHandler):
  label = "quiz"

  def __init__(self) -> None:
    super().__init__(JobType.GENERATE_QUIZ)

  def validate(self, content: Any) -> Any:
    return validate_quiz(content)


class FlashcardsHandler(_JsonHandler):
  label = "flashcards"

  def __init__(self) -> None:
    super().__init__(JobType.GENERATE_FLASHCARDS)

  def validate(self, content: Any) -> Any:
    return validate_flashcards(content)


class MaterialHandler:
  """Markdown material; the only output that goes through diagram repair."""

  job_type = JobType.GENERATE_MATERIAL
  repairs_diagrams = True

  def __init__(self, *, min_chars: int = 500) -> None:
    self._min_chars = min_chars

  def build_prompt(self, record: JobRecord, *, model: str | None = None) -> PromptPayload:
    return build_generation_prompt(self.job_type, record.input_payload, model=model)

  def parse(self, raw: str) -> Any:
    return (raw or "").strip()

  def validate(self, content: Any) -> Any:
    if not isinstance(content, str):
      raise InvalidContent("Generated material is not text.")
    return validate_material(content, min_chars=self._min_chars)

  def build_result(self, content: Any, repair: RepairSummary | None) -> dict[str, Any]:
    return {"markdown": content, "diagram_repair": (repair or RepairSummary()).to_dict()}


class JobHandlerRegistry:
  """Registry mapping job types to handlers."""

  def __init__(self, handlers: dict[JobType, JobHandler]) -> None:
    self._handlers = handlers

  def resolve(self, job_type: JobType) -> JobHandler:
    """Resolve the handler for a job type."""
    handler = self._handlers.get(job_type)
    if handler is None:
      raise ValueError(f"Unsupported job type: {job_type}")
    return handler


def build_default_registry(*, material_min_chars: int = 500) -> JobHandlerRegistry:
  return JobHandlerRegistry({JobType.GENERATE_QUIZ: QuizHandler(), JobType.GENERATE_FLASHCARDS: FlashcardsHandler(), JobType.GENERATE_MATERIAL: MaterialHandler(min_chars=material_min_chars)})
