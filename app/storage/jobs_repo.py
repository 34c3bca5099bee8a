"""Storage interfaces for generation jobs."""

from __future__ import annotations

import logging
from typing import Protocol

from app.jobs.models import GenerationJob, JobAnalytics, JobProgress, JobResults, JobStatus, is_status_regression

logger = logging.getLogger(__name__)


class JobsRepository(Protocol):
  """Repository contract for job persistence."""

  async def create_job(self, job: GenerationJob) -> None:
    """Persist an initial job record."""

  async def get_job(self, job_id: str) -> GenerationJob | None:
    """Fetch a job by identifier."""

  async def update_job(
    self,
    job_id: str,
    *,
    status: JobStatus | None = None,
    progress: JobProgress | None = None,
    results: JobResults | None = None,
    analytics: JobAnalytics | None = None,
    error: str | None = None,
    extracted_text: str | None = None,
    started_at: str | None = None,
    completed_at: str | None = None,
  ) -> GenerationJob | None:
    """Apply partial updates to a job; status never moves backwards."""

  async def list_jobs(self, owner_id: str, *, limit: int, skip: int) -> list[GenerationJob]:
    """Return an owner's jobs, newest first."""

  async def count_jobs(self, owner_id: str) -> int:
    """Return the number of jobs owned by `owner_id`."""

  async def list_completed_jobs(self, owner_id: str) -> list[GenerationJob]:
    """Return an owner's completed jobs."""

  async def find_completed_before(self, owner_id: str, cutoff: str) -> list[GenerationJob]:
    """Return completed jobs created before the ISO timestamp `cutoff`."""

  async def delete_job(self, job_id: str) -> bool:
    """Delete a job; returns False when it did not exist."""


def resolve_status_update(job_id: str, current: str, new: JobStatus | None) -> JobStatus | None:
  """Return the status to write, dropping transitions that would regress."""
  if new is None:
    return None
  if is_status_regression(current, new):
    logger.warning("Refusing status regression for job %s: %s -> %s", job_id, current, new)
    return None
  return new
