from __future__ import annotations

from functools import lru_cache

from app.config import Settings
from app.core.database import asyncpg_dsn
from app.realtime.feed import ChangeFeed
from app.realtime.polling import PollingChangeFeed
from app.realtime.postgres import PostgresChangeFeed
from app.storage.jobs_repo import JobsRepository
from app.storage.memory_jobs_repo import InMemoryJobsRepository
from app.storage.postgres_jobs_repo import PostgresJobsRepository


@lru_cache(maxsize=1)
def _memory_jobs_repo() -> InMemoryJobsRepository:
  """Process-wide in-memory ledger shared by the API and the task endpoint."""
  return InMemoryJobsRepository()


def _get_jobs_repo(settings: Settings) -> JobsRepository:
  """Return the active jobs repository."""
  if settings.ledger_backend == "memory":
    return _memory_jobs_repo()

  if not settings.pg_dsn:
    raise ValueError("LECTERN_PG_DSN must be set to enable Postgres persistence.")

  return PostgresJobsRepository(channel=settings.realtime_channel)


def _get_change_feed(settings: Settings, repo: JobsRepository) -> ChangeFeed:
  """Return the change feed matching the ledger backend and realtime transport."""
  if settings.realtime_transport == "poll":
    return PollingChangeFeed(repo, interval=settings.poll_interval_seconds)

  if isinstance(repo, InMemoryJobsRepository):
    return repo.feed

  dsn = asyncpg_dsn()
  if not dsn:
    raise ValueError("LECTERN_PG_DSN must be set to listen for job changes.")

  return PostgresChangeFeed(dsn, channel=settings.realtime_channel, connect_timeout=settings.pg_connect_timeout, refetch=repo.list_jobs_for_parent)
