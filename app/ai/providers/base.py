"""Base interfaces for AI providers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol


class ProviderHTTPError(Exception):
  """Raised by provider clients when the gateway answers with a non-success status."""

  def __init__(self, status: int | None, message: str) -> None:
    super().__init__(f"{status}: {message}")
    self.status = status
    self.message = message


@dataclass(frozen=True)
class PromptPayload:
  """Structured prompt sent to the generation provider."""

  system_prompt: str
  user_prompt: str
  model: str | None = None
  temperature: float | None = None
  metadata: dict[str, Any] | None = None


@dataclass
class ModelResponse:
  """Free-form text returned by a successful generation call."""

  content: str
  usage: dict[str, int] | None = None


@dataclass(frozen=True)
class DiagramFixRequest:
  """One corrective round trip for a broken diagram."""

  broken_code: str
  context: str
  strategy: str
  attempt: int = 1


@dataclass(frozen=True)
class DiagramFixResponse:
  """Corrected diagram code; empty when the provider produced nothing usable."""

  fixed_code: str


class GenerationProvider(Protocol):
  """Issues a single generation request; retries are the caller's concern."""

  async def generate(self, payload: PromptPayload) -> ModelResponse:
    """Return the model output or raise ProviderHTTPError."""


class DiagramFixer(Protocol):
  """Asks the provider to rewrite one broken diagram."""

  async def fix(self, request: DiagramFixRequest) -> DiagramFixResponse:
    """Return corrected code or raise on any failure."""
