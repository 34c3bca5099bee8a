from app.config import Settings
from app.storage.jobs_repo import JobsRepository
from app.storage.postgres_jobs_repo import PostgresJobsRepository


def _get_jobs_repo(settings: Settings) -> JobsRepository:
  """Return the active jobs repository."""

  # Enforce Postgres-backed storage for jobs.

  if not settings.pg_dsn:
    raise ValueError("QUIZGEN_PG_DSN must be set to enable Postgres persistence.")

  return PostgresJobsRepository()
