import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Query

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
  PendingCountResponse,
  QuizUpdateRequest,
)
from app.config import Settings, get_settings
from app.core.security import get_owner_id
from app.services import jobs as job_service

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("", response_model=JobCreateResponse)
async def create_job(  # noqa: B008
  request: GenerationJobRequest,
  background_tasks: BackgroundTasks,
  settings: Settings = Depends(get_settings),  # noqa: B008
  owner_id: str = Depends(get_owner_id),  # noqa: B008
) -> JobCreateResponse:
  """Submit a batch quiz generation job."""
  return await job_service.create_job(request, settings, background_tasks, owner_id=owner_id)


@router.get("", response_model=JobListResponse, response_model_exclude_unset=True)
async def list_jobs(  # noqa: B008
  limit: int = Query(default=20, ge=1, le=100),
  skip: int = Query(default=0, ge=0),
  analytics_secret: str | None = Query(default=None),
  settings: Settings = Depends(get_settings),  # noqa: B008
  owner_id: str = Depends(get_owner_id),  # noqa: B008
) -> JobListResponse:
  """List the caller's jobs, newest first."""
  return await job_service.list_jobs(settings, owner_id=owner_id, limit=limit, skip=skip, analytics_secret=analytics_secret)


@router.get("/jobs/pending", response_model=PendingCountResponse)
async def count_pending_jobs(  # noqa: B008
  settings: Settings = Depends(get_settings),  # noqa: B008
  owner_id: str = Depends(get_owner_id),  # noqa: B008
) -> PendingCountResponse:
  """Count completed jobs with drafts awaiting review."""
  return await job_service.count_pending_jobs(settings, owner_id=owner_id)


@router.get("/models", response_model=ModelListResponse, dependencies=[Depends(get_owner_id)])
async def list_models(settings: Settings = Depends(get_settings)) -> ModelListResponse:  # noqa: B008
  """List generation models whose provider is configured."""
  return job_service.list_models(settings)


@router.delete("/cleanup", response_model=DeleteResponse)
async def cleanup_jobs(  # noqa: B008
  settings: Settings = Depends(get_settings),  # noqa: B008
  owner_id: str = Depends(get_owner_id),  # noqa: B008
) -> DeleteResponse:
  """Delete old completed jobs whose quizzes were all reviewed."""
  return await job_service.cleanup_jobs(settings, owner_id=owner_id)


@router.get("/{job_id}", response_model=JobStatusResponse, response_model_exclude_unset=True)
async def get_job_status(  # noqa: B008
  job_id: str,
  analytics_secret: str | None = Query(default=None),
  settings: Settings = Depends(get_settings),  # noqa: B008
  owner_id: str = Depends(get_owner_id),  # noqa: B008
) -> JobStatusResponse:
  """Fetch the status, progress and results of a job."""
  return await job_service.get_job_status(job_id, settings, owner_id=owner_id, analytics_secret=analytics_secret)


@router.patch("/{job_id}/quizzes/{temp_id}", response_model=GeneratedQuizModel, response_model_exclude_unset=True)
async def update_quiz(  # noqa: B008
  job_id: str,
  temp_id: str,
  payload: QuizUpdateRequest,
  settings: Settings = Depends(get_settings),  # noqa: B008
  owner_id: str = Depends(get_owner_id),  # noqa: B008
) -> GeneratedQuizModel:
  """Edit or reject a draft quiz."""
  return await job_service.update_quiz(job_id, temp_id, payload, settings, owner_id=owner_id)


@router.post("/{job_id}/approve", response_model=ApproveResponse)
async def approve_quizzes(  # noqa: B008
  job_id: str,
  payload: ApproveRequest,
  settings: Settings = Depends(get_settings),  # noqa: B008
  owner_id: str = Depends(get_owner_id),  # noqa: B008
) -> ApproveResponse:
  """Save selected drafts to the quiz store."""
  return await job_service.approve_quizzes(job_id, payload, settings, owner_id=owner_id)


@router.delete("/{job_id}", response_model=DeleteResponse)
async def delete_job(  # noqa: B008
  job_id: str,
  settings: Settings = Depends(get_settings),  # noqa: B008
  owner_id: str = Depends(get_owner_id),  # noqa: B008
) -> DeleteResponse:
  """Delete a job and its uploaded documents."""
  return await job_service.delete_job(job_id, settings, owner_id=owner_id)
