"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from app.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)


@dataclass(frozen=True)
class Settings:
  """Typed settings for the Lectern service."""

  environment: str
  allowed_origins: tuple[str, ...]
  debug: bool
  log_max_bytes: int
  log_backup_count: int
  log_http_4xx: bool
  pg_dsn: str | None
  pg_connect_timeout: int
  ledger_backend: str
  realtime_channel: str
  realtime_transport: str
  poll_interval_seconds: float
  ai_base_url: str
  ai_api_key: str | None
  ai_model: str
  ai_repair_model: str
  ai_request_timeout_seconds: float
  retry_max_attempts: int
  retry_base_delay_seconds: float
  retry_max_delay_seconds: float
  retry_jitter: float
  job_timeout_seconds: float
  material_min_chars: int
  processing_lease_seconds: float
  reaper_interval_seconds: float
  watchdog_seconds: float
  task_service_provider: str
  base_url: str | None
  task_secret: str | None


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  if not raw:
    raise ValueError("LECTERN_ALLOWED_ORIGINS must be set to one or more origins.")

  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]

  if not origins:
    raise ValueError("LECTERN_ALLOWED_ORIGINS must include at least one origin.")

  if "*" in origins:
    raise ValueError("LECTERN_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_bool(raw: str | None) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return False

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _positive_int(name: str, default: str) -> int:
  value = int(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


def _positive_float(name: str, default: str) -> float:
  value = float(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive number.")
  return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("LECTERN_ENV", "development").lower()

  # Toggle verbose error output and diagnostics in non-production environments.
  debug = _parse_bool(os.getenv("LECTERN_DEBUG"))

  log_max_bytes = _positive_int("LECTERN_LOG_MAX_BYTES", "5242880")  # 5MB default
  log_backup_count = int(os.getenv("LECTERN_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("LECTERN_LOG_BACKUP_COUNT must be zero or a positive integer.")

  pg_dsn = _optional_str(os.getenv("LECTERN_PG_DSN")) or _optional_str(os.getenv("DATABASE_URL"))

  # Fall back to the in-process ledger when no database is configured.
  ledger_backend = (os.getenv("LECTERN_LEDGER_BACKEND") or ("postgres" if pg_dsn else "memory")).strip().lower()
  if ledger_backend not in {"postgres", "memory"}:
    raise ValueError("LECTERN_LEDGER_BACKEND must be 'postgres' or 'memory'.")
  if ledger_backend == "postgres" and not pg_dsn:
    raise ValueError("LECTERN_PG_DSN must be set when LECTERN_LEDGER_BACKEND=postgres.")

  realtime_transport = (os.getenv("LECTERN_REALTIME_TRANSPORT") or "push").strip().lower()
  if realtime_transport not in {"push", "poll"}:
    raise ValueError("LECTERN_REALTIME_TRANSPORT must be 'push' or 'poll'.")

  retry_max_attempts = _positive_int("LECTERN_RETRY_MAX_ATTEMPTS", "4")
  retry_jitter = float(os.getenv("LECTERN_RETRY_JITTER", "0.25"))
  if not 0 <= retry_jitter < 1:
    raise ValueError("LECTERN_RETRY_JITTER must be in [0, 1).")

  task_service_provider = (os.getenv("LECTERN_TASK_SERVICE_PROVIDER") or "local-http").strip().lower()
  if task_service_provider not in {"local-http", "inline"}:
    raise ValueError("LECTERN_TASK_SERVICE_PROVIDER must be 'local-http' or 'inline'.")

  job_timeout_seconds = _positive_float("LECTERN_JOB_TIMEOUT_SECONDS", "300")
  # The lease must outlive the runner ceiling.
  processing_lease_seconds = _positive_float("LECTERN_PROCESSING_LEASE_SECONDS", str(job_timeout_seconds + 60))
  if processing_lease_seconds <= job_timeout_seconds:
    raise ValueError("LECTERN_PROCESSING_LEASE_SECONDS must exceed LECTERN_JOB_TIMEOUT_SECONDS.")

  return Settings(
    environment=environment,
    allowed_origins=_parse_origins(os.getenv("LECTERN_ALLOWED_ORIGINS")),
    debug=debug,
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    log_http_4xx=_parse_bool(os.getenv("LECTERN_LOG_HTTP_4XX")),
    pg_dsn=pg_dsn,
    pg_connect_timeout=_positive_int("LECTERN_PG_CONNECT_TIMEOUT", "5"),
    ledger_backend=ledger_backend,
    realtime_channel=(os.getenv("LECTERN_REALTIME_CHANNEL") or "generation_jobs").strip(),
    realtime_transport=realtime_transport,
    poll_interval_seconds=_positive_float("LECTERN_POLL_INTERVAL_SECONDS", "2"),
    ai_base_url=(os.getenv("LECTERN_AI_BASE_URL") or "https://ai.gateway.lovable.dev/v1").strip(),
    ai_api_key=_optional_str(os.getenv("LECTERN_AI_API_KEY")),
    ai_model=(os.getenv("LECTERN_AI_MODEL") or "google/gemini-2.5-flash").strip(),
    ai_repair_model=(os.getenv("LECTERN_AI_REPAIR_MODEL") or "google/gemini-2.5-flash").strip(),
    ai_request_timeout_seconds=_positive_float("LECTERN_AI_REQUEST_TIMEOUT_SECONDS", "120"),
    retry_max_attempts=retry_max_attempts,
    retry_base_delay_seconds=_positive_float("LECTERN_RETRY_BASE_DELAY_SECONDS", "2"),
    retry_max_delay_seconds=_positive_float("LECTERN_RETRY_MAX_DELAY_SECONDS", "30"),
    retry_jitter=retry_jitter,
    job_timeout_seconds=job_timeout_seconds,
    material_min_chars=_positive_int("LECTERN_MATERIAL_MIN_CHARS", "500"),
    processing_lease_seconds=processing_lease_seconds,
    reaper_interval_seconds=_positive_float("LECTERN_REAPER_INTERVAL_SECONDS", "60"),
    watchdog_seconds=_positive_float("LECTERN_WATCHDOG_SECONDS", "180"),
    task_service_provider=task_service_provider,
    base_url=_optional_str(os.getenv("LECTERN_BASE_URL")),
    task_secret=_optional_str(os.getenv("LECTERN_TASK_SECRET")),
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load database settings without requiring web-runtime configuration like CORS."""
  # Keep database configuration isolated so migrations and offline scripts don't require unrelated env vars.
  debug = _parse_bool(os.getenv("LECTERN_DEBUG"))
  pg_connect_timeout = int(os.getenv("LECTERN_PG_CONNECT_TIMEOUT", "5"))
  if pg_connect_timeout <= 0:
    raise ValueError("LECTERN_PG_CONNECT_TIMEOUT must be a positive integer.")

  pg_dsn = os.getenv("LECTERN_PG_DSN") or os.getenv("DATABASE_URL")

  return DatabaseSettings(debug=debug, pg_dsn=pg_dsn, pg_connect_timeout=pg_connect_timeout)


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value
