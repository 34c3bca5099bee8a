import logging
import secrets
from dataclasses import asdict
from pathlib import Path
from typing import Any

from fastapi import BackgroundTasks, HTTPException, status
from starlette.concurrency import run_in_threadpool

from app.ai.model_catalog import available_models, resolve_selected_model
from app.api.models import (
  ApproveRequest,
  ApproveResponse,
  DeleteResponse,
  GeneratedQuizModel,
  GenerationJobRequest,
  JobCreateResponse,
  JobListResponse,
  JobStatusResponse,
  ModelListResponse,
  ModelOption,
  PendingCountResponse,
  QuizUpdateRequest,
)
from app.config import Settings
from app.jobs.errors import ProviderUnavailableError, QuizStoreError, ValidationError
from app.jobs.models import DocumentReference, GeneratedArtifact, GenerationConfig, GenerationJob, JobProgress, TimerSettings, iso_days_ago, utc_now_iso
from app.services.documents import unlink_documents
from app.services.quiz_store import QuizStoreClient
from app.services.tasks.factory import get_task_enqueuer
from app.storage.factory import _get_jobs_repo
from app.utils.ids import generate_job_id

logger = logging.getLogger(__name__)

_JOB_NOT_FOUND_MSG = "Job not found."
_QUIZ_NOT_FOUND_MSG = "Quiz not found."
_DISPOSED_STATUSES = {"approved", "rejected"}
# Edit fields an explicit null may reset; nulls for other fields are ignored.
_CLEARABLE_FIELDS = {"total_time_limit"}


def analytics_authorized(settings: Settings, supplied: str | None) -> bool:
  """Constant-time check of the analytics secret; an unset secret disables analytics."""
  if not settings.analytics_secret or not supplied:
    return False
  return secrets.compare_digest(supplied.encode("utf-8"), settings.analytics_secret.encode("utf-8"))


def _serialize_artifact(artifact: GeneratedArtifact, *, include_analytics: bool) -> dict[str, Any]:
  """Convert one artifact into its API payload."""
  payload = artifact.to_dict()
  if not include_analytics:
    payload.pop("analytics", None)
  return payload


def _serialize_job(job: GenerationJob, *, include_analytics: bool) -> dict[str, Any]:
  """Convert a job into its API payload; extracted text is never exposed."""
  # Per-item analytics follow the same gate as job analytics.
  items = []
  for item in job.progress.items:
    entry = asdict(item)
    if not include_analytics:
      entry.pop("analytics", None)
    items.append(entry)

  results = None
  if job.results is not None:
    results = {
      "total": job.results.total,
      "successful": job.results.successful,
      "failed": job.results.failed,
      "quizzes": [_serialize_artifact(quiz, include_analytics=include_analytics) for quiz in job.results.quizzes],
    }

  payload: dict[str, Any] = {
    "job_id": job.job_id,
    "status": job.status,
    "config": job.config.to_dict(),
    "progress": {"current": job.progress.current, "total": job.progress.total, "items": items},
    "results": results,
    "error": job.error,
    "created_at": job.created_at,
    "started_at": job.started_at,
    "completed_at": job.completed_at,
  }
  if include_analytics and job.analytics is not None:
    payload["analytics"] = job.analytics.to_dict()
  return payload


def _job_status_from_record(job: GenerationJob, *, include_analytics: bool) -> JobStatusResponse:
  return JobStatusResponse.model_validate(_serialize_job(job, include_analytics=include_analytics))


async def _get_owned_job(job_id: str, settings: Settings, owner_id: str) -> GenerationJob:
  """Load a job, raising 404 when missing and 403 when another owner holds it."""
  repo = _get_jobs_repo(settings)
  job = await repo.get_job(job_id)
  if job is None:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_JOB_NOT_FOUND_MSG)
  if job.owner_id != owner_id:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied.")
  return job


def _build_documents(request: GenerationJobRequest, settings: Settings, timestamp: str) -> list[DocumentReference]:
  """Accept only documents stored inside the upload directory."""
  upload_root = Path(settings.upload_dir).resolve()
  documents: list[DocumentReference] = []
  for document in request.documents:
    storage_path = Path(document.storage_path).resolve()
    if not storage_path.is_relative_to(upload_root):
      raise ValidationError(f"Document '{document.original_name}' is outside the upload directory.")
    documents.append(
      DocumentReference(
        document_type=document.document_type,  # type: ignore[arg-type]
        filename=document.filename,
        original_name=document.original_name,
        size=document.size,
        mimetype=document.mimetype,
        storage_path=str(storage_path),
        uploaded_at=timestamp,
      )
    )
  return documents


async def create_job(request: GenerationJobRequest, settings: Settings, background_tasks: BackgroundTasks, *, owner_id: str) -> JobCreateResponse:
  """Validate a submission, persist a pending job and hand it to the task executor."""
  # Reject before persisting so a bad submission never creates a job.
  if not available_models(settings):
    raise ProviderUnavailableError("No AI provider is configured. Set OPENAI_API_KEY, ANTHROPIC_API_KEY or GEMINI_API_KEY.")

  descriptor = resolve_selected_model(settings, request.model_id)
  if descriptor is None:
    raise ValidationError(f"Invalid model id '{request.model_id}'.")

  # Build the frozen config the worker reads back from storage.
  timestamp = utc_now_iso()
  timer = request.timer_settings
  config = GenerationConfig(
    instructions=request.instructions,
    item_count=request.item_count,
    questions_per_quiz=request.questions_per_quiz,
    quiz_types=tuple(request.quiz_types),
    education_level=request.education_level,
    model_id=descriptor.id,
    subject=request.subject,
    timer_settings=TimerSettings(type=timer.type, default_seconds=timer.default_seconds) if timer else None,
  )
  job = GenerationJob(
    job_id=generate_job_id(),
    owner_id=owner_id,
    status="pending",
    config=config,
    progress=JobProgress(current=0, total=config.item_count),
    created_at=timestamp,
    updated_at=timestamp,
    documents=_build_documents(request, settings, timestamp),
  )

  # Persist the pending job before dispatch so the worker can find it.
  repo = _get_jobs_repo(settings)
  await repo.create_job(job)
  logger.info("Created generation job %s: %d quizzes with %s", job.job_id, config.item_count, descriptor.id)

  trigger_job_processing(background_tasks, job.job_id, settings)
  return JobCreateResponse(job_id=job.job_id, status="pending")


async def get_job_status(job_id: str, settings: Settings, *, owner_id: str, analytics_secret: str | None = None) -> JobStatusResponse:
  """Fetch the status and results of a generation job."""
  job = await _get_owned_job(job_id, settings, owner_id)
  return _job_status_from_record(job, include_analytics=analytics_authorized(settings, analytics_secret))


async def list_jobs(settings: Settings, *, owner_id: str, limit: int, skip: int, analytics_secret: str | None = None) -> JobListResponse:
  """List the owner's jobs, newest first, with the unpaginated total."""
  repo = _get_jobs_repo(settings)
  include_analytics = analytics_authorized(settings, analytics_secret)
  jobs = await repo.list_jobs(owner_id, limit=limit, skip=skip)
  total = await repo.count_jobs(owner_id)
  return JobListResponse(jobs=[_job_status_from_record(job, include_analytics=include_analytics) for job in jobs], total=total, limit=limit, skip=skip)


async def count_pending_jobs(settings: Settings, *, owner_id: str) -> PendingCountResponse:
  """Count completed jobs that still hold at least one draft."""
  repo = _get_jobs_repo(settings)
  jobs = await repo.list_completed_jobs(owner_id)
  count = sum(1 for job in jobs if job.results is not None and any(quiz.status == "draft" for quiz in job.results.quizzes))
  return PendingCountResponse(count=count)


def list_models(settings: Settings) -> ModelListResponse:
  """List models whose provider key is configured; the first one is the default."""
  models = available_models(settings)
  options = [ModelOption(id=model.id, provider=model.provider, model=model.model, label=model.label, description=model.description) for model in models]
  return ModelListResponse(models=options, default_model_id=models[0].id if models else None, available=bool(models))


async def update_quiz(job_id: str, temp_id: str, payload: QuizUpdateRequest, settings: Settings, *, owner_id: str) -> GeneratedQuizModel:
  """Edit one draft quiz in place."""
  job = await _get_owned_job(job_id, settings, owner_id)
  quizzes = job.results.quizzes if job.results is not None else []
  quiz = next((candidate for candidate in quizzes if candidate.temp_id == temp_id), None)
  if quiz is None:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_QUIZ_NOT_FOUND_MSG)
  if quiz.status != "draft":
    raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Only draft quizzes can be edited; this quiz is {quiz.status}.")

  # Only fields present in the request change.
  for field_name, value in payload.model_dump(exclude_unset=True).items():
    if value is None and field_name not in _CLEARABLE_FIELDS:
      continue
    setattr(quiz, field_name, value)
  quiz.updated_at = utc_now_iso()

  # Results are stored as one JSONB document, so the whole list is rewritten.
  repo = _get_jobs_repo(settings)
  await repo.update_job(job_id, results=job.results)
  return GeneratedQuizModel.model_validate(_serialize_artifact(quiz, include_analytics=False))


def _quiz_store_payload(quiz: GeneratedArtifact) -> dict[str, Any]:
  """Shape a draft the way the quiz store's batch endpoint expects it."""
  payload: dict[str, Any] = {"quizType": quiz.quiz_type, "name": quiz.name, "subject": quiz.subject, "topic": quiz.topic, "totalTimeLimit": quiz.total_time_limit}
  # Crossword quizzes are stored by their entries.
  if quiz.quiz_type == "crossword":
    payload["entries"] = quiz.entries or quiz.items or []
  else:
    payload["items"] = quiz.items
  return payload


async def approve_quizzes(job_id: str, request: ApproveRequest, settings: Settings, *, owner_id: str, store: QuizStoreClient | None = None) -> ApproveResponse:
  """Save selected drafts to the quiz store and mark the ones it accepted."""
  job = await _get_owned_job(job_id, settings, owner_id)
  requested = set(request.quiz_ids)
  quizzes = job.results.quizzes if job.results is not None else []
  selected = [quiz for quiz in quizzes if quiz.temp_id in requested and quiz.status == "draft"]
  if not selected:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No valid quizzes to approve.")

  # Upstream failures surface as 502 with the store's message.
  store = store or QuizStoreClient(settings)
  try:
    result = await store.create_quizzes_batch([_quiz_store_payload(quiz) for quiz in selected], owner_id)
  except QuizStoreError as exc:
    raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc

  # Returned ids line up with the submitted order; missing ids stay drafts.
  timestamp = utc_now_iso()
  for quiz, saved_id in zip(selected, result.quiz_ids, strict=False):
    if saved_id:
      quiz.status = "approved"
      quiz.saved_quiz_id = saved_id
      quiz.updated_at = timestamp

  repo = _get_jobs_repo(settings)
  await repo.update_job(job_id, results=job.results)
  logger.info("Approved %d of %d selected quizzes for job %s", len(result.quiz_ids), len(selected), job_id)
  return ApproveResponse(saved_quiz_ids=result.quiz_ids, errors=result.errors)


async def delete_job(job_id: str, settings: Settings, *, owner_id: str) -> DeleteResponse:
  """Delete one job and its uploaded documents."""
  job = await _get_owned_job(job_id, settings, owner_id)
  # Uploaded files go before the row.
  await run_in_threadpool(unlink_documents, job.documents)
  repo = _get_jobs_repo(settings)
  deleted = await repo.delete_job(job_id)
  return DeleteResponse(deleted=1 if deleted else 0)


def _eligible_for_cleanup(job: GenerationJob) -> bool:
  """A job may be cleaned up once no draft remains."""
  quizzes = job.results.quizzes if job.results is not None else []
  return all(quiz.status in _DISPOSED_STATUSES for quiz in quizzes)


async def cleanup_jobs(settings: Settings, *, owner_id: str) -> DeleteResponse:
  """Delete old completed jobs whose quizzes have all been approved or rejected."""
  repo = _get_jobs_repo(settings)
  cutoff = iso_days_ago(settings.job_retention_days)
  deleted = 0
  for job in await repo.find_completed_before(owner_id, cutoff):
    if not _eligible_for_cleanup(job):
      continue
    await run_in_threadpool(unlink_documents, job.documents)
    if await repo.delete_job(job.job_id):
      deleted += 1
  logger.info("Cleaned up %d generation job(s) for owner %s", deleted, owner_id)
  return DeleteResponse(deleted=deleted)


async def process_job_sync(job_id: str, settings: Settings) -> GenerationJob | None:
  """Run a pending job to completion on the current event loop."""
  # Imported lazily to keep provider SDKs off the request import path.
  from app.jobs.worker import build_job_controller

  repo = _get_jobs_repo(settings)
  try:
    controller = build_job_controller(settings, repo)
    return await controller.process_job(job_id)
  except Exception as exc:  # noqa: BLE001
    logger.error("Job processing failed for job %s: %s", job_id, exc, exc_info=True)
    try:
      await repo.update_job(job_id, status="failed", error=f"System error during job processing: {exc}", completed_at=utc_now_iso())
    except Exception as update_exc:  # noqa: BLE001
      logger.error("Failed to update job status after processing error: %s", update_exc)
    return None


def trigger_job_processing(background_tasks: BackgroundTasks, job_id: str, settings: Settings) -> None:
  """Schedule background processing via the configured task enqueuer."""
  enqueuer = get_task_enqueuer(settings)

  async def _dispatch() -> None:
    try:
      await enqueuer.enqueue(job_id, {})
    except Exception as exc:  # noqa: BLE001
      logger.error("Failed to enqueue job %s: %s", job_id, exc, exc_info=True)
      # Pending jobs must not stay pending forever when dispatch fails.
      repo = _get_jobs_repo(settings)
      job = await repo.get_job(job_id)
      if job is not None and job.status == "pending":
        await repo.update_job(job_id, status="failed", error="Enqueue failed: TASK_ENQUEUE_FAILED", completed_at=utc_now_iso())

  # Dispatch after the response so submission returns immediately.
  background_tasks.add_task(_dispatch)
