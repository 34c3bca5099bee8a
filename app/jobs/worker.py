"""Background processor for queued quiz generation jobs."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import replace
from typing import Protocol

from app.ai.model_catalog import build_model_client, resolve_selected_model
from app.ai.providers.base import AIModel
from app.config import Settings
from app.jobs.analytics import build_job_analytics
from app.jobs.attempt import CrosswordLayouter, GenerationAttempt, WorkItem
from app.jobs.context import ContextAllocator
from app.jobs.errors import OrchestrationError, RulesUnavailableError
from app.jobs.models import QUIZ_TYPES, GeneratedArtifact, GenerationJob, ItemProgress, JobResults, QuizType, utc_now_iso
from app.jobs.planning import PlanningPass, build_guided_context
from app.jobs.pool import WorkerPool
from app.jobs.progress import ProgressAggregator
from app.jobs.retry import RetryingGenerator, SleepFn
from app.services.documents import DocumentReader, PlainTextDocumentReader, read_documents
from app.services.quiz_store import QuizStoreClient
from app.services.rules_client import QuizRules, RulesClient
from app.storage.jobs_repo import JobsRepository
from app.utils.ids import generate_temp_id

logger = logging.getLogger(__name__)

ModelFactory = Callable[[str], AIModel]


class RulesSource(Protocol):
  async def fetch_or_fallback(self) -> QuizRules: ...


def resolve_quiz_types(requested: Sequence[str], rules: QuizRules) -> list[QuizType]:
  """Keep requested types the rules allow; otherwise fall back in catalog order."""
  allowed = {quiz_type for quiz_type in rules.quiz_types if quiz_type in QUIZ_TYPES}
  deduplicated = list(dict.fromkeys(quiz_type for quiz_type in requested if quiz_type in QUIZ_TYPES))
  selected = [quiz_type for quiz_type in deduplicated if quiz_type in allowed]
  if selected:
    return selected  # type: ignore[return-value]
  fallback = [quiz_type for quiz_type in QUIZ_TYPES if not allowed or quiz_type in allowed]
  return fallback or ["basic"]


def build_type_plan(item_count: int, quiz_types: Sequence[QuizType]) -> list[QuizType]:
  """Assign types round-robin, e.g. [basic, rapid] over 3 items -> basic, rapid, basic."""
  types = list(quiz_types) or ["basic"]
  return [types[index % len(types)] for index in range(max(1, item_count))]


class JobLifecycleController:
  """Drive one job from pending to completed or failed."""

  def __init__(
    self,
    *,
    jobs_repo: JobsRepository,
    settings: Settings,
    model_factory: ModelFactory,
    rules_source: RulesSource,
    document_reader: DocumentReader,
    crossword: CrosswordLayouter | None = None,
    allocator: ContextAllocator | None = None,
    sleep: SleepFn = asyncio.sleep,
  ) -> None:
    self._jobs_repo = jobs_repo
    self._settings = settings
    self._model_factory = model_factory
    self._rules_source = rules_source
    self._document_reader = document_reader
    self._crossword = crossword
    self._allocator = allocator or ContextAllocator()
    self._sleep = sleep

  async def process_job(self, job_id: str) -> GenerationJob | None:
    """Run a pending job; jobs in any other state are left untouched."""
    job = await self._jobs_repo.get_job(job_id)
    if job is None:
      logger.warning("Generation job %s not found", job_id)
      return None
    if job.status != "pending":
      logger.info("Skipping generation job %s in status %s", job_id, job.status)
      return job

    # Claim the job before any slow work.
    await self._jobs_repo.update_job(job_id, status="processing", started_at=utc_now_iso())
    try:
      return await self._run(job)
    except Exception as exc:  # noqa: BLE001
      logger.error("Generation job %s failed", job_id, exc_info=True)
      return await self._jobs_repo.update_job(job_id, status="failed", error=str(exc) or exc.__class__.__name__, completed_at=utc_now_iso())

  async def _run(self, job: GenerationJob) -> GenerationJob | None:
    settings = self._settings
    config = job.config
    item_count = config.item_count

    # Build per-item contexts from instructions and reference documents.
    try:
      documents = await read_documents(self._document_reader, job.documents)
      allocation = self._allocator.allocate(instructions=config.instructions, item_count=item_count, documents=documents)
    except OrchestrationError:
      raise
    except Exception as exc:  # noqa: BLE001
      raise OrchestrationError(f"Failed to build generation contexts: {exc}") from exc
    if allocation.combined_extracted_text:
      await self._jobs_repo.update_job(job.job_id, extracted_text=allocation.combined_extracted_text)

    # Rules decide which quiz types may be generated.
    try:
      rules = await self._rules_source.fetch_or_fallback()
    except RulesUnavailableError as exc:
      raise OrchestrationError(f"Quiz rules unavailable: {exc}") from exc

    type_plan = build_type_plan(item_count, resolve_quiz_types(config.quiz_types, rules))
    model = self._model_factory(config.model_id)

    # Optional blueprint pass; a failure falls back to the unguided contexts.
    contexts = list(allocation.per_item_contexts)
    planning_analytics = None
    if settings.planning_enabled:
      planning = await PlanningPass(model=model, max_retries=settings.planning_max_retries, backoff_seconds=settings.retry_backoff_seconds, sleep=self._sleep).run(config=config, contexts=contexts, type_plan=type_plan)
      planning_analytics = planning.analytics
      if planning.guided:
        contexts = [build_guided_context(context, planning.items[index], planning.items) for index, context in enumerate(contexts)]

    # Seed one pending record per item before any work starts.
    work_items = [WorkItem(index=index, temp_id=generate_temp_id(), item_number=index + 1, quiz_type=type_plan[index], context=contexts[index]) for index in range(item_count)]
    progress = ProgressAggregator(
      job_id=job.job_id,
      total=item_count,
      items=[ItemProgress(temp_id=item.temp_id, item_number=item.item_number) for item in work_items],
      persist=lambda snapshot: self._persist_progress(job.job_id, snapshot),
      debounce_seconds=settings.progress_debounce_seconds,
    )
    await self._jobs_repo.update_job(job.job_id, progress=progress.snapshot())

    generator = RetryingGenerator(
      attempt=GenerationAttempt(model=model, rules=rules, config=config, crossword=self._crossword),
      progress=progress,
      provider=model.provider,
      model=model.name,
      max_retries=settings.max_retries,
      backoff_seconds=settings.retry_backoff_seconds,
      sleep=self._sleep,
    )

    async def _run_item(index: int) -> GeneratedArtifact | None:
      """Generate one item and mirror its outcome onto its progress record."""
      item = work_items[index]
      progress.update(replace(progress.get(item.temp_id), status="generating"))
      try:
        artifact = await generator.generate(item)
      except Exception as exc:
        progress.update(replace(progress.get(item.temp_id), status="failed", error=str(exc)))
        raise
      progress.update(replace(progress.get(item.temp_id), status="completed" if artifact is not None else "failed"))
      return artifact

    # Items run with bounded concurrency; the final flush lands after every item settles.
    pool = WorkerPool(limit=settings.parallel_limit, poll_interval=settings.pool_poll_interval_seconds)
    outcomes = await pool.run(item_count, _run_item)
    final_progress = await progress.flush_final()

    # Partition outcomes; failed items keep their error on the progress record.
    quizzes = [artifact for artifact in outcomes if artifact is not None]
    results = JobResults(total=item_count, successful=len(quizzes), failed=item_count - len(quizzes), quizzes=quizzes)
    analytics = build_job_analytics((record.analytics for record in final_progress.items), planning=planning_analytics)

    logger.info("Generation job %s completed: %d/%d quizzes generated", job.job_id, results.successful, item_count)
    return await self._jobs_repo.update_job(job.job_id, status="completed", results=results, analytics=analytics, completed_at=utc_now_iso())

  async def _persist_progress(self, job_id: str, snapshot) -> None:
    """Write one progress snapshot; called by the aggregator, one write at a time."""
    await self._jobs_repo.update_job(job_id, progress=snapshot)


def _catalog_model_factory(settings: Settings) -> ModelFactory:
  """Resolve model ids against the catalog; unavailable models fail the job."""

  def _factory(model_id: str) -> AIModel:
    descriptor = resolve_selected_model(settings, model_id)
    if descriptor is None:
      raise OrchestrationError(f"Model '{model_id}' is not available. No provider API key is configured for it.")
    return build_model_client(settings, descriptor)

  return _factory


def build_job_controller(settings: Settings, jobs_repo: JobsRepository) -> JobLifecycleController:
  """Wire the controller with its production collaborators."""
  return JobLifecycleController(
    jobs_repo=jobs_repo,
    settings=settings,
    model_factory=_catalog_model_factory(settings),
    rules_source=RulesClient(settings),
    document_reader=PlainTextDocumentReader(),
    crossword=QuizStoreClient(settings),
  )
