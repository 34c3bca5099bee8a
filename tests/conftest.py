"""Shared fixtures and in-memory doubles for the generation engine tests."""

from __future__ import annotations

import asyncio
import json
import re
from collections.abc import Callable
from dataclasses import replace
from typing import Any

import pytest

from app.ai.providers.base import AIModel, LLMCallMetrics, LLMGenerationError, LLMJsonResult
from app.config import Settings
from app.jobs.models import GenerationConfig, GenerationJob, JobProgress, TokenUsage, utc_now_iso
from app.services.rules_client import FALLBACK_RULES, QuizRules
from app.storage.jobs_repo import resolve_status_update

_BATCH_POSITION_RE = re.compile(r"Batch Position: Quiz (\d+)/")


@pytest.fixture
def anyio_backend() -> str:
  return "asyncio"


def build_settings(**overrides: Any) -> Settings:
  """Settings with fast timings; no network or database is configured."""
  base = Settings(
    environment="test",
    allowed_origins=("http://localhost:3000",),
    debug=False,
    log_max_bytes=1048576,
    log_backup_count=1,
    pg_dsn=None,
    pg_connect_timeout=5,
    auto_create_tables=False,
    parallel_limit=2,
    max_retries=3,
    retry_backoff_seconds=1.0,
    pool_poll_interval_seconds=0.001,
    progress_debounce_seconds=0.01,
    planning_enabled=False,
    planning_max_retries=3,
    provider_timeout_seconds=5.0,
    quiz_service_url="http://quiz-service.test",
    quiz_service_secret="quiz-secret",
    rules_timeout_seconds=1.0,
    rules_fallback_enabled=True,
    analytics_secret="analytics-secret",
    job_retention_days=30,
    upload_dir="/tmp/quizgen-uploads",
    task_service_provider="inprocess",
    base_url=None,
    task_secret="task-secret",
    openai_api_key="sk-test",
    anthropic_api_key=None,
    gemini_api_key=None,
  )
  return replace(base, **overrides)


@pytest.fixture
def settings() -> Settings:
  return build_settings()


def build_config(**overrides: Any) -> GenerationConfig:
  base = GenerationConfig(
    instructions="Practise adding fractions with unlike denominators.",
    item_count=3,
    questions_per_quiz=5,
    quiz_types=("basic",),
    education_level="primary-4",
    model_id="openai-gpt-5-mini",
    subject="Mathematics",
  )
  return replace(base, **overrides)


def build_job(job_id: str = "job-1", *, owner_id: str = "teacher-1", status: str = "pending", config: GenerationConfig | None = None, created_at: str | None = None, **overrides: Any) -> GenerationJob:
  config = config or build_config()
  timestamp = created_at or utc_now_iso()
  job = GenerationJob(job_id=job_id, owner_id=owner_id, status=status, config=config, progress=JobProgress(current=0, total=config.item_count), created_at=timestamp, updated_at=timestamp)  # type: ignore[arg-type]
  return replace(job, **overrides)


class InMemoryJobsRepo:
  """Minimal in-memory jobs repo that records progress writes."""

  def __init__(self, *, write_delay: float = 0.0) -> None:
    self.jobs: dict[str, GenerationJob] = {}
    self.progress_writes: list[JobProgress] = []
    self.write_delay = write_delay
    self.progress_in_flight = 0
    self.max_progress_in_flight = 0

  async def create_job(self, job: GenerationJob) -> None:
    self.jobs[job.job_id] = job

  async def get_job(self, job_id: str) -> GenerationJob | None:
    return self.jobs.get(job_id)

  async def update_job(self, job_id: str, *, status=None, progress=None, results=None, analytics=None, error=None, extracted_text=None, started_at=None, completed_at=None) -> GenerationJob | None:
    job = self.jobs.get(job_id)
    if job is None:
      return None

    if progress is not None:
      self.progress_in_flight += 1
      self.max_progress_in_flight = max(self.max_progress_in_flight, self.progress_in_flight)
    try:
      if self.write_delay:
        await asyncio.sleep(self.write_delay)
      updates = {"progress": progress, "results": results, "analytics": analytics, "error": error, "extracted_text": extracted_text, "started_at": started_at, "completed_at": completed_at}
      # Merge updates onto the latest record to mimic persistence behavior.
      latest = self.jobs[job_id]
      next_status = resolve_status_update(job_id, latest.status, status)
      if next_status is not None:
        updates["status"] = next_status
      if progress is not None:
        self.progress_writes.append(progress)
      latest = replace(latest, updated_at=utc_now_iso(), **{key: value for key, value in updates.items() if value is not None})
      self.jobs[job_id] = latest
      return latest
    finally:
      if progress is not None:
        self.progress_in_flight -= 1

  async def list_jobs(self, owner_id: str, *, limit: int, skip: int) -> list[GenerationJob]:
    owned = sorted((job for job in self.jobs.values() if job.owner_id == owner_id), key=lambda job: job.created_at, reverse=True)
    return owned[skip : skip + limit]

  async def count_jobs(self, owner_id: str) -> int:
    return sum(1 for job in self.jobs.values() if job.owner_id == owner_id)

  async def list_completed_jobs(self, owner_id: str) -> list[GenerationJob]:
    return [job for job in self.jobs.values() if job.owner_id == owner_id and job.status == "completed"]

  async def find_completed_before(self, owner_id: str, cutoff: str) -> list[GenerationJob]:
    return [job for job in await self.list_completed_jobs(owner_id) if job.created_at < cutoff]

  async def delete_job(self, job_id: str) -> bool:
    return self.jobs.pop(job_id, None) is not None


@pytest.fixture
def jobs_repo() -> InMemoryJobsRepo:
  return InMemoryJobsRepo()


def valid_quiz_payload(*, questions: int = 5, name: str = "Fraction Practice", topic: str = "Adding fractions") -> dict[str, Any]:
  items = [{"type": "mc", "text": f"What is 1/{n} + 1/{n}?", "options": [{"text": f"2/{n}", "correct": True}, {"text": f"1/{n * 2}", "correct": False}]} for n in range(2, 2 + questions)]
  return {"name": name, "topic": topic, "items": items}


def item_number_from_prompt(user_prompt: str) -> int | None:
  match = _BATCH_POSITION_RE.search(user_prompt)
  return int(match.group(1)) if match else None


Responder = Callable[[str, str], dict[str, Any]]


class ScriptedModel(AIModel):
  """JSON model double; the responder returns a payload or raises LLMGenerationError."""

  provider = "openai"
  name = "gpt-test"

  def __init__(self, responder: Responder | None = None, *, delay: float = 0.0, usage: TokenUsage | None = None) -> None:
    self._responder = responder or (lambda system_prompt, user_prompt: valid_quiz_payload())
    self._delay = delay
    self._usage = usage or TokenUsage(input_tokens=100, output_tokens=50, total_tokens=150)
    self.calls: list[str] = []
    self.active = 0
    self.max_active = 0

  def metrics(self) -> LLMCallMetrics:
    return LLMCallMetrics(provider=self.provider, model=self.name, llm_latency_ms=7, usage=self._usage)

  async def generate_json(self, *, system_prompt: str, user_prompt: str) -> LLMJsonResult:
    self.calls.append(user_prompt)
    self.active += 1
    self.max_active = max(self.max_active, self.active)
    try:
      if self._delay:
        await asyncio.sleep(self._delay)
      try:
        payload = self._responder(system_prompt, user_prompt)
      except LLMGenerationError:
        raise
      except Exception as exc:  # noqa: BLE001
        raise LLMGenerationError(str(exc), metrics=self.metrics()) from exc
      return LLMJsonResult(parsed=payload, raw_text=json.dumps(payload), metrics=self.metrics())
    finally:
      self.active -= 1


@pytest.fixture
def scripted_model() -> type[ScriptedModel]:
  return ScriptedModel


class StaticRules:
  """Rules source double that never touches the network."""

  def __init__(self, rules: QuizRules = FALLBACK_RULES) -> None:
    self.rules = rules
    self.calls = 0

  async def fetch_or_fallback(self) -> QuizRules:
    self.calls += 1
    return self.rules


class MappingDocumentReader:
  def __init__(self, texts: dict[str, str] | None = None) -> None:
    self.texts = texts or {}

  async def read(self, document) -> str:
    return self.texts[document.storage_path]


class RecordingSleep:
  """Sleep double that records requested delays without waiting."""

  def __init__(self) -> None:
    self.delays: list[float] = []

  async def __call__(self, seconds: float) -> None:
    self.delays.append(seconds)
    await asyncio.sleep(0)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
  return RecordingSleep()
