"""Retry logic with exponential backoff for rate-limited provider calls."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, TypeVar

from app.ai.providers.base import ProviderHTTPError
from app.jobs.errors import ProviderError, RateLimited

if TYPE_CHECKING:
  from app.config import Settings

T = TypeVar("T")
logger = logging.getLogger(__name__)

# 429 Too Many Requests and 402 Payment Required (gateway credits exhausted).
DEFAULT_RETRYABLE_STATUSES: frozenset[int] = frozenset({429, 402})


@dataclass(frozen=True)
class RetryPolicy:
  """Backoff policy for provider calls.

  Attempt n (1-based) waits ``min(base_delay * 2 ** (n - 1), max_delay)`` seconds before attempt
  n + 1, scaled by a random factor in ``[1 - jitter, 1 + jitter]``.
  """

  max_attempts: int = 4
  base_delay: float = 2.0
  max_delay: float = 30.0
  jitter: float = 0.25
  retryable_statuses: frozenset[int] = field(default=DEFAULT_RETRYABLE_STATUSES)

  def __post_init__(self) -> None:
    if self.max_attempts < 1:
      raise ValueError("max_attempts must be at least 1.")
    if self.base_delay < 0 or self.max_delay < 0:
      raise ValueError("Backoff delays must not be negative.")
    if not 0 <= self.jitter < 1:
      raise ValueError("jitter must be in [0, 1).")

  @classmethod
  def from_settings(cls, settings: Settings) -> RetryPolicy:
    return cls(max_attempts=settings.retry_max_attempts, base_delay=settings.retry_base_delay_seconds, max_delay=settings.retry_max_delay_seconds, jitter=settings.retry_jitter)

  def is_retryable(self, status: int | None) -> bool:
    return status is not None and status in self.retryable_statuses

  def delay_for(self, attempt: int, rng: random.Random | None = None) -> float:
    """Return the delay to wait after a failed attempt."""
    delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
    if self.jitter:
      spread = delay * self.jitter
      delay += (rng or random).uniform(-spread, spread)
    return max(delay, 0.0)


async def retry_with_backoff(
  func: Callable[[], Awaitable[T]],
  *,
  policy: RetryPolicy,
  sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
  rng: random.Random | None = None,
  label: str = "provider call",
) -> T:
  """
  Execute an async provider call, retrying rate-limit and quota responses.

  Raises RateLimited once every attempt returned a retryable status, and ProviderError on the
  first non-retryable failure.
  """
  last_status: int | None = None

  for attempt in range(1, policy.max_attempts + 1):
    try:
      return await func()
    except ProviderHTTPError as exc:
      if not policy.is_retryable(exc.status):
        logger.error("%s failed with non-retryable status %s: %s", label, exc.status, exc.message)
        raise ProviderError(exc.status, exc.message) from exc

      last_status = exc.status
      if attempt >= policy.max_attempts:
        logger.error("%s still rate limited after %d attempts (last status %s).", label, attempt, exc.status)
        raise RateLimited(attempt, last_status) from exc

      delay = policy.delay_for(attempt, rng)
      logger.warning("%s attempt %d/%d returned %s. Retrying in %.2fs...", label, attempt, policy.max_attempts, exc.status, delay)
      await sleep(delay)

  # Unreachable: the loop either returns or raises on the final attempt.
  raise RateLimited(policy.max_attempts, last_status)
