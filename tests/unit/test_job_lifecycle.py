from __future__ import annotations

import httpx
import pytest
from conftest import InMemoryJobsRepo, MappingDocumentReader, RecordingSleep, ScriptedModel, StaticRules, build_config, build_job, build_settings, item_number_from_prompt, valid_quiz_payload

from app.jobs.errors import OrchestrationError
from app.jobs.models import DocumentReference
from app.jobs.worker import JobLifecycleController, build_type_plan, resolve_quiz_types
from app.services.rules_client import FALLBACK_RULES, QuizRules, RulesClient


def _controller(repo: InMemoryJobsRepo, model: ScriptedModel, *, settings=None, rules_source=None, reader=None, sleep=None) -> JobLifecycleController:
  return JobLifecycleController(
    jobs_repo=repo,
    settings=settings or build_settings(),
    model_factory=lambda model_id: model,
    rules_source=rules_source or StaticRules(),
    document_reader=reader or MappingDocumentReader(),
    sleep=sleep or RecordingSleep(),
  )


def _failing_item(number: int):
  def _responder(system_prompt: str, user_prompt: str) -> dict:
    if item_number_from_prompt(user_prompt) == number:
      raise RuntimeError("provider error")
    return valid_quiz_payload()

  return _responder


@pytest.mark.anyio
async def test_all_items_succeed_with_bounded_concurrency() -> None:
  repo = InMemoryJobsRepo()
  await repo.create_job(build_job())
  model = ScriptedModel(delay=0.02)

  job = await _controller(repo, model).process_job("job-1")

  assert job.status == "completed"
  assert job.started_at and job.completed_at
  assert job.results.total == 3
  assert job.results.successful == 3
  assert job.results.failed == 0
  assert len(job.results.quizzes) == 3
  assert all(quiz.status == "draft" and quiz.retry_count == 0 for quiz in job.results.quizzes)
  assert model.max_active <= 2
  assert job.progress.current == 3
  assert job.progress.total == 3
  assert [item.status for item in job.progress.items] == ["completed"] * 3
  assert job.analytics.totals.attempt_count == 3
  assert job.analytics.totals.total_tokens == 450


@pytest.mark.anyio
async def test_one_exhausted_item_does_not_fail_the_job() -> None:
  repo = InMemoryJobsRepo()
  await repo.create_job(build_job())
  sleep = RecordingSleep()
  model = ScriptedModel(_failing_item(2))

  job = await _controller(repo, model, sleep=sleep).process_job("job-1")

  assert job.status == "completed"
  assert job.results.successful == 2
  assert job.results.failed == 1
  assert job.results.successful + job.results.failed == job.results.total
  # Backoff only happens between attempts of the failing item.
  assert sleep.delays == [1.0, 2.0]

  failed = job.progress.items[1]
  assert failed.item_number == 2
  assert failed.status == "failed"
  assert failed.retry_count == 2
  assert failed.error
  assert failed.temp_id not in {quiz.temp_id for quiz in job.results.quizzes}
  assert job.analytics.totals.attempt_count == 5
  assert job.analytics.totals.successful_attempts == 2


@pytest.mark.anyio
async def test_job_with_every_item_failing_still_completes() -> None:
  repo = InMemoryJobsRepo()
  await repo.create_job(build_job(config=build_config(item_count=2)))
  model = ScriptedModel(lambda system_prompt, user_prompt: {"name": "Broken", "topic": "", "items": []})

  job = await _controller(repo, model).process_job("job-1")

  assert job.status == "completed"
  assert job.results.successful == 0
  assert job.results.failed == 2
  assert job.results.quizzes == []
  assert all(item.status == "failed" for item in job.progress.items)


@pytest.mark.anyio
async def test_rules_outage_without_fallback_fails_the_job() -> None:
  def _refuse(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("connection refused", request=request)

  settings = build_settings(rules_fallback_enabled=False)
  rules = RulesClient(settings, transport=httpx.MockTransport(_refuse))
  repo = InMemoryJobsRepo()
  await repo.create_job(build_job())
  model = ScriptedModel()

  job = await _controller(repo, model, settings=settings, rules_source=rules).process_job("job-1")

  assert job.status == "failed"
  assert "Quiz rules unavailable" in job.error
  assert job.completed_at is not None
  assert job.results is None
  assert job.progress.current == 0
  assert job.progress.total == 3
  assert model.calls == []


@pytest.mark.anyio
async def test_rules_outage_with_fallback_uses_built_in_rules() -> None:
  def _refuse(request: httpx.Request) -> httpx.Response:
    return httpx.Response(503)

  settings = build_settings()
  repo = InMemoryJobsRepo()
  await repo.create_job(build_job(config=build_config(item_count=1)))

  job = await _controller(repo, ScriptedModel(), settings=settings, rules_source=RulesClient(settings, transport=httpx.MockTransport(_refuse))).process_job("job-1")

  assert job.status == "completed"
  assert job.results.successful == 1


@pytest.mark.anyio
async def test_progress_writes_are_serialized_and_end_terminal() -> None:
  repo = InMemoryJobsRepo(write_delay=0.01)
  await repo.create_job(build_job(config=build_config(item_count=5)))
  model = ScriptedModel(delay=0.005)

  job = await _controller(repo, model, settings=build_settings(parallel_limit=3, progress_debounce_seconds=0.001)).process_job("job-1")

  assert repo.max_progress_in_flight == 1
  assert all(write.total == 5 for write in repo.progress_writes)
  currents = [write.current for write in repo.progress_writes]
  assert currents == sorted(currents)
  assert currents[-1] == 5
  assert job.progress.current == 5


@pytest.mark.anyio
async def test_non_pending_job_is_left_untouched() -> None:
  repo = InMemoryJobsRepo()
  await repo.create_job(build_job(status="completed"))
  model = ScriptedModel()

  job = await _controller(repo, model).process_job("job-1")

  assert job.status == "completed"
  assert model.calls == []
  assert repo.progress_writes == []


@pytest.mark.anyio
async def test_missing_job_returns_none() -> None:
  assert await _controller(InMemoryJobsRepo(), ScriptedModel()).process_job("missing") is None


@pytest.mark.anyio
async def test_unavailable_model_fails_the_job() -> None:
  repo = InMemoryJobsRepo()
  await repo.create_job(build_job())

  def _no_model(model_id: str):
    raise OrchestrationError(f"Model '{model_id}' is not available.")

  controller = JobLifecycleController(jobs_repo=repo, settings=build_settings(), model_factory=_no_model, rules_source=StaticRules(), document_reader=MappingDocumentReader(), sleep=RecordingSleep())
  job = await controller.process_job("job-1")

  assert job.status == "failed"
  assert "not available" in job.error


@pytest.mark.anyio
async def test_documents_are_extracted_and_rotated_into_prompts() -> None:
  document = DocumentReference(document_type="subject-content", filename="notes.txt", original_name="notes.txt", size=10, mimetype="text/plain", storage_path="/uploads/notes.txt", uploaded_at="2026-01-01T00:00:00Z")
  sentences = " ".join(f"Fact{index:02d} about fractions and parts of a whole." for index in range(12))
  repo = InMemoryJobsRepo()
  await repo.create_job(build_job(documents=[document]))
  model = ScriptedModel()

  job = await _controller(repo, model, reader=MappingDocumentReader({"/uploads/notes.txt": sentences})).process_job("job-1")

  assert job.status == "completed"
  assert "=== notes.txt [Subject Content] ===" in job.extracted_text
  assert all("Subject Content Focus:" in prompt for prompt in model.calls)


@pytest.mark.anyio
async def test_unreadable_document_fails_the_job() -> None:
  document = DocumentReference(document_type="syllabus", filename="s.pdf", original_name="s.pdf", size=10, mimetype="application/pdf", storage_path="/uploads/missing.pdf", uploaded_at="2026-01-01T00:00:00Z")
  repo = InMemoryJobsRepo()
  await repo.create_job(build_job(documents=[document]))

  job = await _controller(repo, ScriptedModel()).process_job("job-1")

  assert job.status == "failed"
  assert "Failed to build generation contexts" in job.error


@pytest.mark.anyio
async def test_planning_failure_falls_back_to_unguided_generation() -> None:
  def _responder(system_prompt: str, user_prompt: str) -> dict:
    if "Create a generation blueprint for" in user_prompt:
      raise ValueError("planner offline")
    return valid_quiz_payload()

  sleep = RecordingSleep()
  repo = InMemoryJobsRepo()
  await repo.create_job(build_job())
  model = ScriptedModel(_responder)

  job = await _controller(repo, model, settings=build_settings(planning_enabled=True, planning_max_retries=2), sleep=sleep).process_job("job-1")

  assert job.status == "completed"
  assert job.results.successful == 3
  assert job.analytics.planning.fallback_used is True
  assert job.analytics.planning.success is False
  assert sleep.delays == [1.0]
  assert not any("PLANNING PASS BLUEPRINT" in prompt for prompt in model.calls)


@pytest.mark.anyio
async def test_successful_planning_guides_each_item() -> None:
  plan = {
    "quizzes": [
      {"quizNumber": n, "quizType": "basic", "focus": f"Focus area {chr(64 + n)}", "angle": "Word problems", "mustCover": ["denominators"], "avoidOverlap": ["simplifying"]}
      for n in (1, 2, 3)
    ]
  }

  def _responder(system_prompt: str, user_prompt: str) -> dict:
    if "Create a generation blueprint for" in user_prompt:
      return plan
    return valid_quiz_payload()

  repo = InMemoryJobsRepo()
  await repo.create_job(build_job())
  model = ScriptedModel(_responder)

  job = await _controller(repo, model, settings=build_settings(planning_enabled=True)).process_job("job-1")

  quiz_prompts = [prompt for prompt in model.calls if "Create a generation blueprint for" not in prompt]
  assert len(quiz_prompts) == 3
  assert all("PLANNING PASS BLUEPRINT" in prompt for prompt in quiz_prompts)
  assert job.analytics.planning.success is True
  assert job.analytics.planning.plan_item_count == 3
  assert job.analytics.totals.attempt_count == 4


@pytest.mark.anyio
async def test_requested_types_are_restricted_to_published_rules() -> None:
  rules = QuizRules(quiz_types=("rapid",), schemas=FALLBACK_RULES.schemas)
  repo = InMemoryJobsRepo()
  await repo.create_job(build_job(config=build_config(quiz_types=("basic",))))

  job = await _controller(repo, ScriptedModel(), rules_source=StaticRules(rules)).process_job("job-1")

  assert {quiz.quiz_type for quiz in job.results.quizzes} == {"rapid"}


def test_type_plan_is_round_robin() -> None:
  assert build_type_plan(5, ["basic", "rapid"]) == ["basic", "rapid", "basic", "rapid", "basic"]
  assert build_type_plan(2, []) == ["basic", "basic"]


def test_resolve_quiz_types_falls_back_to_allowed_catalog_order() -> None:
  rules = QuizRules(quiz_types=("true-false", "crossword"))

  assert resolve_quiz_types(["basic", "crossword", "crossword"], rules) == ["crossword"]
  assert resolve_quiz_types(["basic"], rules) == ["crossword", "true-false"]
