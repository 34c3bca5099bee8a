"""Postgres-backed repository for generation jobs using SQLAlchemy."""

from __future__ import annotations

from dataclasses import asdict

from sqlalchemy import delete, func, select

from app.core.database import get_session_factory
from app.jobs.models import DocumentReference, GenerationConfig, GenerationJob, JobAnalytics, JobProgress, JobResults, JobStatus, utc_now_iso
from app.schema.jobs import GenerationJobRow
from app.storage.jobs_repo import JobsRepository, resolve_status_update


class PostgresJobsRepository(JobsRepository):
  """Persist generation jobs to Postgres using SQLAlchemy."""

  def __init__(self) -> None:
    self._session_factory = get_session_factory()
    if self._session_factory is None:
      raise RuntimeError("Database not initialized")

  async def create_job(self, job: GenerationJob) -> None:
    async with self._session_factory() as session:
      row = GenerationJobRow(
        job_id=job.job_id,
        owner_id=job.owner_id,
        status=job.status,
        config_json=job.config.to_dict(),
        documents_json=[asdict(document) for document in job.documents],
        progress_json=job.progress.to_dict(),
        results_json=job.results.to_dict() if job.results else None,
        analytics_json=job.analytics.to_dict() if job.analytics else None,
        error=job.error,
        extracted_text=job.extracted_text,
        created_at=job.created_at,
        started_at=job.started_at,
        completed_at=job.completed_at,
        updated_at=job.updated_at,
      )
      session.add(row)
      await session.commit()

  async def get_job(self, job_id: str) -> GenerationJob | None:
    async with self._session_factory() as session:
      row = await session.get(GenerationJobRow, job_id)
      if row is None:
        return None
      return self._row_to_job(row)

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
    async with self._session_factory() as session:
      # Lock the row so concurrent writers cannot interleave a status regression.
      stmt = select(GenerationJobRow).where(GenerationJobRow.job_id == job_id).with_for_update()
      row = (await session.execute(stmt)).scalar_one_or_none()
      if row is None:
        return None
      next_status = resolve_status_update(job_id, row.status, status)
      if next_status is not None:
        row.status = next_status
      if progress is not None:
        row.progress_json = progress.to_dict()
      if results is not None:
        row.results_json = results.to_dict()
      if analytics is not None:
        row.analytics_json = analytics.to_dict()
      if error is not None:
        row.error = error
      if extracted_text is not None:
        row.extracted_text = extracted_text
      if started_at is not None:
        row.started_at = started_at
      if completed_at is not None:
        row.completed_at = completed_at
      row.updated_at = utc_now_iso()
      await session.commit()
      await session.refresh(row)
      return self._row_to_job(row)

  async def list_jobs(self, owner_id: str, *, limit: int, skip: int) -> list[GenerationJob]:
    async with self._session_factory() as session:
      stmt = select(GenerationJobRow).where(GenerationJobRow.owner_id == owner_id).order_by(GenerationJobRow.created_at.desc()).offset(skip).limit(limit)
      rows = (await session.execute(stmt)).scalars().all()
      return [self._row_to_job(row) for row in rows]

  async def count_jobs(self, owner_id: str) -> int:
    async with self._session_factory() as session:
      stmt = select(func.count()).select_from(GenerationJobRow).where(GenerationJobRow.owner_id == owner_id)
      return int((await session.execute(stmt)).scalar_one())

  async def list_completed_jobs(self, owner_id: str) -> list[GenerationJob]:
    async with self._session_factory() as session:
      stmt = select(GenerationJobRow).where(GenerationJobRow.owner_id == owner_id, GenerationJobRow.status == "completed").order_by(GenerationJobRow.created_at.desc())
      rows = (await session.execute(stmt)).scalars().all()
      return [self._row_to_job(row) for row in rows]

  async def find_completed_before(self, owner_id: str, cutoff: str) -> list[GenerationJob]:
    async with self._session_factory() as session:
      # ISO-8601 UTC strings sort chronologically.
      stmt = select(GenerationJobRow).where(GenerationJobRow.owner_id == owner_id, GenerationJobRow.status == "completed", GenerationJobRow.created_at < cutoff)
      rows = (await session.execute(stmt)).scalars().all()
      return [self._row_to_job(row) for row in rows]

  async def delete_job(self, job_id: str) -> bool:
    async with self._session_factory() as session:
      result = await session.execute(delete(GenerationJobRow).where(GenerationJobRow.job_id == job_id))
      await session.commit()
      return bool(result.rowcount)

  def _row_to_job(self, row: GenerationJobRow) -> GenerationJob:
    config = GenerationConfig.from_dict(row.config_json)
    return GenerationJob(
      job_id=row.job_id,
      owner_id=row.owner_id,
      status=row.status,  # type: ignore[arg-type]
      config=config,
      progress=JobProgress.from_dict(row.progress_json, total=config.item_count),
      created_at=row.created_at,
      updated_at=row.updated_at,
      documents=[DocumentReference(**document) for document in row.documents_json or []],
      results=JobResults.from_dict(row.results_json),
      analytics=JobAnalytics.from_dict(row.analytics_json),
      error=row.error,
      extracted_text=row.extracted_text,
      started_at=row.started_at,
      completed_at=row.completed_at,
    )
