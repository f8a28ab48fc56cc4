"""Prompt builders for generation jobs and diagram repair."""

from __future__ import annotations

from typing import Any

from app.ai.providers.base import DiagramFixRequest, PromptPayload
from app.jobs.errors import InvalidContent
from app.jobs.models import JobType

JsonDict = dict[str, Any]

MAX_TRANSCRIPT_CHARS = 60_000
MAX_REQUESTED_ITEMS = 100
COUNT_FIELDS: dict[str, int] = {"question_count": 10, "card_count": 15}

_QUIZ_SYSTEM = """You are an assistant that writes multiple-choice quizzes for engineering lectures.
Return ONLY valid JSON with this shape, no markdown fences:
{"questions": [{"question": "...", "options": {"A": "...", "B": "...", "C": "...", "D": "..."}, "correct_answer": "A", "explanation": "..."}]}"""

_FLASHCARDS_SYSTEM = """You are an assistant that writes study flashcards for engineering lectures.
Return ONLY valid JSON with this shape, no markdown fences:
{"cards": [{"front": "...", "back": "...", "tags": ["..."]}]}"""

_MATERIAL_SYSTEM = """You are an assistant that writes didactic material in Markdown for engineering lectures.
Structure the material with headings. Diagrams must be fenced as ```mermaid blocks and start with one of:
graph, flowchart, sequenceDiagram, stateDiagram-v2, classDiagram.
End with a "## References" section listing numbered sources as [1], [2], ... and prefer academic sources."""

_DIAGRAM_FIX_SYSTEM = """You are a Mermaid diagram syntax expert. Fix the broken diagram while preserving its intent.

STRATEGY FOR THIS ATTEMPT: {strategy}

RULES:
1. Return ONLY the corrected Mermaid code (no explanations, no markdown fences)
2. Use ONLY ASCII arrows: --> , <-- , ==>
3. Use ONLY alphanumeric node IDs (A, B, C1, State1)
4. Replace Greek letters in labels with spelled names (Delta, alpha)
5. Remove special characters from labels: ( ) < > & " '
6. Use ONLY these diagram types: graph, flowchart, sequenceDiagram, stateDiagram-v2, classDiagram"""


def _format_tags(tags: Any) -> str:
  if not tags:
    return "-"
  if isinstance(tags, str):
    return tags
  return ", ".join(str(tag) for tag in tags)


def requested_count(input_payload: JsonDict, field: str) -> int:
  """Item count asked for in the job input, or the field's default when absent."""
  raw = input_payload.get(field)
  if raw is None:
    return COUNT_FIELDS[field]
  problem = f"{field} must be a whole number between 1 and {MAX_REQUESTED_ITEMS}."
  # bool is an int subclass.
  if isinstance(raw, bool) or not isinstance(raw, int | str):
    raise InvalidContent(problem)
  try:
    count = int(raw)
  except ValueError:
    raise InvalidContent(problem) from None
  if not 1 <= count <= MAX_REQUESTED_ITEMS:
    raise InvalidContent(problem)
  return count


def _lecture_context(input_payload: JsonDict) -> str:
  """Render the lecture fields shared by every generation prompt."""
  title = str(input_payload.get("title") or "Untitled lecture")
  transcript = str(input_payload.get("transcript") or "")[:MAX_TRANSCRIPT_CHARS]
  return f"Lecture title: {title}\nTopics: {_format_tags(input_payload.get('tags'))}\n\nTranscript:\n{transcript or '-'}"


def build_generation_prompt(job_type: JobType, input_payload: JsonDict, *, model: str | None = None) -> PromptPayload:
  """Build the prompt payload for one job type."""
  context = _lecture_context(input_payload)
  if job_type is JobType.GENERATE_QUIZ:
    count = requested_count(input_payload, "question_count")
    return PromptPayload(system_prompt=_QUIZ_SYSTEM, user_prompt=f"Write {count} questions.\n\n{context}", model=model)
  if job_type is JobType.GENERATE_FLASHCARDS:
    count = requested_count(input_payload, "card_count")
    return PromptPayload(system_prompt=_FLASHCARDS_SYSTEM, user_prompt=f"Write {count} flashcards.\n\n{context}", model=model)
  if job_type is JobType.GENERATE_MATERIAL:
    teacher = input_payload.get("teacher_name")
    byline = f"Prepared for professor {teacher}.\n\n" if teacher else ""
    return PromptPayload(system_prompt=_MATERIAL_SYSTEM, user_prompt=f"{byline}{context}", model=model)
  raise ValueError(f"Unsupported job type: {job_type}")


def build_diagram_fix_prompt(request: DiagramFixRequest, *, model: str | None = None) -> PromptPayload:
  """Build the corrective prompt for one broken diagram."""
  system_prompt = _DIAGRAM_FIX_SYSTEM.format(strategy=request.strategy)
  user_prompt = f"Context: {request.context or 'Engineering diagram'}\nAttempt: {request.attempt}\n\nBroken code:\n{request.broken_code}"
  return PromptPayload(system_prompt=system_prompt, user_prompt=user_prompt, model=model, temperature=0.3)
