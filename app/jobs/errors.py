"""Error taxonomy for the generation job pipeline."""

from __future__ import annotations

from dataclasses import dataclass


class JobPipelineError(Exception):
  """Base class for pipeline failures."""


class JobNotFound(JobPipelineError):
  """Raised when a ledger row does not exist."""

  def __init__(self, job_id: str) -> None:
    super().__init__(f"Job {job_id} not found.")
    self.job_id = job_id


class AlreadyClaimed(JobPipelineError):
  """Raised when a claim targets a row that is no longer PENDING."""

  def __init__(self, job_id: str, status: str) -> None:
    super().__init__(f"Job {job_id} is {status}, not PENDING.")
    self.job_id = job_id
    self.status = status


class InvalidTransition(JobPipelineError):
  """Raised when a write would move a row backwards or skip a state."""

  def __init__(self, job_id: str, current: str, target: str) -> None:
    super().__init__(f"Job {job_id} cannot move from {current} to {target}.")
    self.job_id = job_id
    self.current = current
    self.target = target


class InvalidJobRecord(JobPipelineError):
  """Raised when a row or change event carries values outside the closed job enums."""


class RateLimited(JobPipelineError):
  """Raised once the retry policy gives up on rate-limit or quota responses."""

  def __init__(self, attempts: int, last_status: int | None, message: str | None = None) -> None:
    detail = f"AI provider rate limited the request after {attempts} attempts"
    if last_status is not None:
      detail += f" (HTTP {last_status})"
    super().__init__(message or f"{detail}. Try again in a few minutes.")
    self.attempts = attempts
    self.last_status = last_status


class ProviderError(JobPipelineError):
  """Raised for non-retryable provider failures."""

  def __init__(self, status: int | None, message: str) -> None:
    label = f"HTTP {status}" if status is not None else "no status"
    super().__init__(f"AI provider error ({label}): {message}")
    self.status = status
    self.message = message


class InvalidContent(JobPipelineError):
  """Raised when generated content fails structural validation."""


class RepairFailure(JobPipelineError):
  """Raised for one diagram block that could not be repaired; always absorbed by the caller."""

  def __init__(self, block_index: int, reason: str) -> None:
    super().__init__(f"Diagram block {block_index} could not be repaired: {reason}")
    self.block_index = block_index
    self.reason = reason


@dataclass(frozen=True)
class ClientTimeout:
  """Client-side watchdog expiry for one job; advisory only, never written to the ledger."""

  job_id: str
  job_type: str
  waited_seconds: float
