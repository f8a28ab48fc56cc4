import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import urlparse

from fastapi import FastAPI

from app.core.database import dispose_db_engine
from app.core.logging import _initialize_logging
from app.jobs.reaper import run_reaper_loop
from app.storage.factory import _get_jobs_repo


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Set up logging and run the stranded-job sweep for the lifetime of the app."""
  from app.config import get_settings

  settings = get_settings()
  logger = logging.getLogger("app.core.lifespan")

  try:
    _initialize_logging(settings)
    logger.info("Startup complete - logging verified.")
  except RuntimeError:
    # Keep serving with uvicorn's default handlers when the log directory is not writable.
    logger.warning("Logging setup failed; continuing with default handlers.", exc_info=True)

  logger.info("Ledger backend=%s realtime=%s dsn=%s", settings.ledger_backend, settings.realtime_transport, _redact_dsn(settings.pg_dsn))
  jobs_repo = _get_jobs_repo(settings)
  reaper = asyncio.create_task(
    run_reaper_loop(jobs_repo, lease_seconds=settings.processing_lease_seconds, interval_seconds=settings.reaper_interval_seconds),
    name="stranded-job-reaper",
  )
  app.state.reaper_task = reaper

  try:
    yield
  finally:
    reaper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
      await reaper
    await dispose_db_engine()
    logger.info("Shutdown complete.")


def _redact_dsn(raw: str | None) -> str:
  """Redact credentials from a DSN while keeping host/db visible."""
  if not raw:
    return "<unset>"

  parsed = urlparse(raw)
  if not parsed.scheme:
    return "<invalid>"

  user = parsed.username or ""
  host = parsed.hostname or ""
  port = f":{parsed.port}" if parsed.port else ""
  netloc = f"{user}@{host}{port}" if user else f"{host}{port}"
  database = parsed.path.lstrip("/")
  path = f"/{database}" if database else ""
  return f"{parsed.scheme}://{netloc}{path}"
