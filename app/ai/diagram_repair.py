"""Best-effort repair of Mermaid diagrams embedded in generated markdown.

Blocks are handled one at a time so a repair pass never sends concurrent requests to the
rate-limited provider. A block that cannot be fixed is left exactly as generated.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from app.ai.prompts import build_diagram_fix_prompt
from app.ai.providers.base import DiagramFixer, DiagramFixRequest, DiagramFixResponse, GenerationProvider
from app.jobs.errors import RepairFailure

logger = logging.getLogger(__name__)

MERMAID_BLOCK_RE = re.compile(r"```mermaid[ \t]*\r?\n(.*?)```", re.DOTALL)
VALID_DIAGRAM_KEYWORDS: tuple[str, ...] = ("flowchart", "graph", "sequenceDiagram", "classDiagram", "stateDiagram-v2")
DEFAULT_REPAIR_STRATEGY = "Fix syntax while preserving educational intent"
DEFAULT_REPAIR_CONTEXT = "Engineering diagram"

_CODE_FENCE_RE = re.compile(r"^```[a-zA-Z]*[ \t]*\r?\n?|\r?\n?```$")


@dataclass(frozen=True)
class DiagramBlock:
  """A fenced diagram located in a markdown document."""

  index: int
  raw_code: str
  start: int
  end: int

  @property
  def code(self) -> str:
    return self.raw_code.strip()

  @property
  def is_valid(self) -> bool:
    return is_valid_diagram(self.raw_code)


@dataclass(frozen=True)
class RepairSummary:
  fixed_count: int = 0
  skipped_count: int = 0
  failed_count: int = 0

  @property
  def total(self) -> int:
    return self.fixed_count + self.skipped_count + self.failed_count

  def to_dict(self) -> dict[str, int]:
    return {"fixed": self.fixed_count, "skipped": self.skipped_count, "failed": self.failed_count, "total": self.total}


def is_valid_diagram(code: str) -> bool:
  """Syntax heuristic: a diagram is accepted when it opens with a known diagram type."""
  return code.strip().startswith(VALID_DIAGRAM_KEYWORDS)


def extract_diagram_blocks(markdown: str) -> list[DiagramBlock]:
  """Return every mermaid block in document order."""
  return [DiagramBlock(index=index, raw_code=match.group(1), start=match.start(), end=match.end()) for index, match in enumerate(MERMAID_BLOCK_RE.finditer(markdown))]


def _strip_code_fences(code: str) -> str:
  return _CODE_FENCE_RE.sub("", code.strip()).strip()


def _render_block(code: str) -> str:
  return f"```mermaid\n{code}\n```"


class ProviderDiagramFixer(DiagramFixer):
  """Diagram fixer backed by the generation provider."""

  def __init__(self, provider: GenerationProvider, *, model: str | None = None) -> None:
    self._provider = provider
    self._model = model

  async def fix(self, request: DiagramFixRequest) -> DiagramFixResponse:
    response = await self._provider.generate(build_diagram_fix_prompt(request, model=self._model))
    return DiagramFixResponse(fixed_code=response.content)


class DiagramRepairService:
  """Scan markdown for invalid diagrams and ask the provider to fix them."""

  def __init__(self, fixer: DiagramFixer, *, strategy: str = DEFAULT_REPAIR_STRATEGY, max_attempts: int = 1) -> None:
    if max_attempts < 1:
      raise ValueError("max_attempts must be at least 1.")
    self._fixer = fixer
    self._strategy = strategy
    self._max_attempts = max_attempts

  async def repair(self, markdown: str, context: str = "", *, job_id: str | None = None) -> tuple[str, RepairSummary]:
    """Return the repaired markdown and a summary whose counts add up to the blocks found."""
    blocks = extract_diagram_blocks(markdown)
    if not blocks:
      return markdown, RepairSummary()

    label = f"[Job {job_id}] " if job_id else ""
    logger.info("%sFound %d diagram blocks to check", label, len(blocks))
    replacements: list[tuple[DiagramBlock, str]] = []
    fixed = skipped = failed = 0

    for block in blocks:
      if block.is_valid:
        skipped += 1
        continue
      try:
        fixed_code = await self._repair_block(block, total=len(blocks), context=context)
      except RepairFailure as exc:
        logger.warning("%s%s", label, exc)
        failed += 1
        continue
      replacements.append((block, fixed_code))
      fixed += 1

    # Splice from the end so earlier spans stay valid.
    repaired = markdown
    for block, fixed_code in reversed(replacements):
      repaired = repaired[: block.start] + _render_block(fixed_code) + repaired[block.end :]

    summary = RepairSummary(fixed_count=fixed, skipped_count=skipped, failed_count=failed)
    logger.info("%sDiagram repair summary: %d fixed, %d skipped, %d failed (total %d)", label, fixed, skipped, failed, summary.total)
    return repaired, summary

  async def _repair_block(self, block: DiagramBlock, *, total: int, context: str) -> str:
    reason = "no attempts made"
    hint = f"{context or DEFAULT_REPAIR_CONTEXT} - diagram {block.index + 1} of {total}"

    for attempt in range(1, self._max_attempts + 1):
      request = DiagramFixRequest(broken_code=block.code, context=hint, strategy=self._strategy, attempt=attempt)
      try:
        response = await self._fixer.fix(request)
      except Exception as exc:  # noqa: BLE001
        reason = f"{type(exc).__name__}: {exc}"
        continue

      fixed_code = _strip_code_fences(response.fixed_code) if isinstance(getattr(response, "fixed_code", None), str) else ""
      if not fixed_code:
        reason = "provider returned no fixed code"
        continue
      # Leftover fences mean prose surrounded the answer.
      if "```" in fixed_code:
        reason = "provider returned text around the fenced code"
        continue
      return fixed_code

    raise RepairFailure(block.index + 1, reason)
