"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

_TASK_SERVICE_PROVIDERS = {"inprocess", "http"}


@dataclass(frozen=True)
class Settings:
  """Typed settings for the quiz generation service."""

  environment: str
  allowed_origins: tuple[str, ...]
  debug: bool
  log_max_bytes: int
  log_backup_count: int
  pg_dsn: str | None
  pg_connect_timeout: int
  auto_create_tables: bool
  parallel_limit: int
  max_retries: int
  retry_backoff_seconds: float
  pool_poll_interval_seconds: float
  progress_debounce_seconds: float
  planning_enabled: bool
  planning_max_retries: int
  provider_timeout_seconds: float
  quiz_service_url: str
  quiz_service_secret: str | None
  rules_timeout_seconds: float
  rules_fallback_enabled: bool
  analytics_secret: str | None
  job_retention_days: int
  upload_dir: str
  task_service_provider: str
  base_url: str | None
  task_secret: str | None
  openai_api_key: str | None
  anthropic_api_key: str | None
  gemini_api_key: str | None


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  if not raw:
    return ("http://localhost:3000",)

  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]

  if not origins:
    raise ValueError("QUIZGEN_ALLOWED_ORIGINS must include at least one origin.")

  if "*" in origins:
    raise ValueError("QUIZGEN_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_bool(raw: str | None, *, default: bool = False) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None or raw.strip() == "":
    return default

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _parse_positive_int(name: str, default: str) -> int:
  value = int(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


def _parse_millis(name: str, default: str) -> float:
  value = int(os.getenv(name, default))
  if value < 0:
    raise ValueError(f"{name} must be zero or a positive integer.")
  return value / 1000.0


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("QUIZGEN_ENV", "development").lower()

  # Toggle verbose error output and diagnostics in non-production environments.
  debug = _parse_bool(os.getenv("QUIZGEN_DEBUG"))

  log_max_bytes = int(os.getenv("QUIZGEN_LOG_MAX_BYTES", "5242880"))  # 5MB default
  if log_max_bytes <= 0:
    raise ValueError("QUIZGEN_LOG_MAX_BYTES must be a positive integer.")

  log_backup_count = int(os.getenv("QUIZGEN_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("QUIZGEN_LOG_BACKUP_COUNT must be zero or a positive integer.")

  # Concurrency and retry knobs for the generation engine.
  parallel_limit = _parse_positive_int("QUIZGEN_PARALLEL_LIMIT", "10")
  max_retries = _parse_positive_int("QUIZGEN_MAX_RETRIES", "5")
  planning_max_retries = max(1, int(os.getenv("QUIZGEN_PLANNING_MAX_RETRIES", "3")))
  retry_backoff_seconds = float(os.getenv("QUIZGEN_RETRY_BACKOFF_SECONDS", "1.0"))
  if retry_backoff_seconds < 0:
    raise ValueError("QUIZGEN_RETRY_BACKOFF_SECONDS must not be negative.")

  provider_timeout_seconds = float(os.getenv("QUIZGEN_PROVIDER_TIMEOUT_SECONDS", "120"))
  rules_timeout_seconds = float(os.getenv("QUIZGEN_RULES_TIMEOUT_SECONDS", "10"))
  if provider_timeout_seconds <= 0 or rules_timeout_seconds <= 0:
    raise ValueError("Provider and rules timeouts must be positive.")

  task_service_provider = os.getenv("QUIZGEN_TASK_SERVICE_PROVIDER", "inprocess").strip().lower()
  if task_service_provider not in _TASK_SERVICE_PROVIDERS:
    raise ValueError("QUIZGEN_TASK_SERVICE_PROVIDER must be 'inprocess' or 'http'.")

  # Prefer the dedicated webhook secret and fall back to the shared class secret.
  quiz_service_secret = _optional_str(os.getenv("QUIZ_WEBHOOK_SECRET")) or _optional_str(os.getenv("CLASS_SHARED_SECRET"))

  return Settings(
    environment=environment,
    allowed_origins=_parse_origins(os.getenv("QUIZGEN_ALLOWED_ORIGINS")),
    debug=debug,
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    pg_dsn=os.getenv("QUIZGEN_PG_DSN") or os.getenv("DATABASE_URL"),
    pg_connect_timeout=int(os.getenv("QUIZGEN_PG_CONNECT_TIMEOUT", "5")),
    auto_create_tables=_parse_bool(os.getenv("QUIZGEN_AUTO_CREATE_TABLES")),
    parallel_limit=parallel_limit,
    max_retries=max_retries,
    retry_backoff_seconds=retry_backoff_seconds,
    pool_poll_interval_seconds=_parse_millis("QUIZGEN_POOL_POLL_INTERVAL_MS", "100"),
    progress_debounce_seconds=_parse_millis("QUIZGEN_PROGRESS_DEBOUNCE_MS", "500"),
    planning_enabled=_parse_bool(os.getenv("QUIZGEN_PLANNING_ENABLED"), default=True),
    planning_max_retries=planning_max_retries,
    provider_timeout_seconds=provider_timeout_seconds,
    quiz_service_url=(os.getenv("QUIZ_SERVICE_URL") or "http://localhost:7302").strip().rstrip("/"),
    quiz_service_secret=quiz_service_secret,
    rules_timeout_seconds=rules_timeout_seconds,
    rules_fallback_enabled=_parse_bool(os.getenv("QUIZGEN_RULES_FALLBACK_ENABLED"), default=True),
    analytics_secret=_optional_str(os.getenv("QUIZGEN_ANALYTICS_SECRET")),
    job_retention_days=_parse_positive_int("QUIZGEN_JOB_RETENTION_DAYS", "30"),
    upload_dir=(os.getenv("QUIZGEN_UPLOAD_DIR") or "./uploads").strip(),
    task_service_provider=task_service_provider,
    base_url=_optional_str(os.getenv("QUIZGEN_BASE_URL")),
    task_secret=_optional_str(os.getenv("QUIZGEN_TASK_SECRET")),
    openai_api_key=_optional_str(os.getenv("OPENAI_API_KEY")),
    anthropic_api_key=_optional_str(os.getenv("ANTHROPIC_API_KEY")),
    gemini_api_key=_optional_str(os.getenv("GEMINI_API_KEY")) or _optional_str(os.getenv("GOOGLE_API_KEY")),
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load database settings without requiring web-runtime configuration like CORS."""
  debug = _parse_bool(os.getenv("QUIZGEN_DEBUG"))
  pg_connect_timeout = int(os.getenv("QUIZGEN_PG_CONNECT_TIMEOUT", "5"))
  if pg_connect_timeout <= 0:
    raise ValueError("QUIZGEN_PG_CONNECT_TIMEOUT must be a positive integer.")

  # Support fallback to DATABASE_URL for hosted Postgres providers.
  pg_dsn = os.getenv("QUIZGEN_PG_DSN") or os.getenv("DATABASE_URL")

  return DatabaseSettings(debug=debug, pg_dsn=pg_dsn, pg_connect_timeout=pg_connect_timeout)


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value
