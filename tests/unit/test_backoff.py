from __future__ import annotations

import random

import pytest

from app.ai.backoff import RetryPolicy, retry_with_backoff
from app.ai.providers.base import ProviderHTTPError
from app.jobs.errors import ProviderError, RateLimited


class _RecordingSleep:
  def __init__(self) -> None:
    self.delays: list[float] = []

  async def __call__(self, delay: float) -> None:
    self.delays.append(delay)


def _flaky(statuses: list[int | None], result: str = "ok"):
  remaining = list(statuses)
  calls = {"count": 0}

  async def _call() -> str:
    calls["count"] += 1
    if remaining:
      raise ProviderHTTPError(remaining.pop(0), "gateway said no")
    return result

  return _call, calls


def test_delay_doubles_and_caps_without_jitter() -> None:
  policy = RetryPolicy(max_attempts=6, base_delay=2.0, max_delay=10.0, jitter=0.0)
  assert [policy.delay_for(attempt) for attempt in range(1, 6)] == [2.0, 4.0, 8.0, 10.0, 10.0]


def test_jitter_stays_within_band() -> None:
  policy = RetryPolicy(base_delay=4.0, max_delay=30.0, jitter=0.25)
  rng = random.Random(7)
  for _ in range(50):
    assert 3.0 <= policy.delay_for(1, rng) <= 5.0


@pytest.mark.parametrize("kwargs", [{"max_attempts": 0}, {"jitter": 1.0}, {"base_delay": -1.0}])
def test_policy_rejects_invalid_values(kwargs: dict) -> None:
  with pytest.raises(ValueError):
    RetryPolicy(**kwargs)


def test_only_rate_limit_and_quota_statuses_are_retryable() -> None:
  policy = RetryPolicy()
  assert policy.is_retryable(429)
  assert policy.is_retryable(402)
  assert not policy.is_retryable(500)
  assert not policy.is_retryable(None)


@pytest.mark.anyio
async def test_retries_rate_limit_then_succeeds() -> None:
  sleep = _RecordingSleep()
  call, calls = _flaky([429, 402])
  result = await retry_with_backoff(call, policy=RetryPolicy(max_attempts=4, base_delay=1.0, jitter=0.0), sleep=sleep)
  assert result == "ok"
  assert calls["count"] == 3
  assert sleep.delays == [1.0, 2.0]


@pytest.mark.anyio
async def test_exhaustion_raises_rate_limited() -> None:
  sleep = _RecordingSleep()
  call, calls = _flaky([429, 429, 429])
  with pytest.raises(RateLimited) as exc_info:
    await retry_with_backoff(call, policy=RetryPolicy(max_attempts=3, base_delay=1.0, jitter=0.0), sleep=sleep)
  assert calls["count"] == 3
  assert len(sleep.delays) == 2
  assert exc_info.value.attempts == 3
  assert exc_info.value.last_status == 429
  assert "rate limited" in str(exc_info.value)


@pytest.mark.anyio
async def test_non_retryable_status_fails_immediately() -> None:
  sleep = _RecordingSleep()
  call, calls = _flaky([500])
  with pytest.raises(ProviderError) as exc_info:
    await retry_with_backoff(call, policy=RetryPolicy(), sleep=sleep)
  assert calls["count"] == 1
  assert sleep.delays == []
  assert exc_info.value.status == 500


@pytest.mark.anyio
async def test_connection_failure_without_status_is_fatal() -> None:
  call, calls = _flaky([None])
  with pytest.raises(ProviderError) as exc_info:
    await retry_with_backoff(call, policy=RetryPolicy(), sleep=_RecordingSleep())
  assert calls["count"] == 1
  assert exc_info.value.status is None
