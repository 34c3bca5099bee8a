from __future__ import annotations

from dataclasses import replace

import pytest
from conftest import RecordingSleep, ScriptedModel

from app.jobs.attempt import AttemptOutcome, WorkItem
from app.jobs.errors import AttemptError
from app.jobs.models import GeneratedArtifact, ItemProgress
from app.jobs.retry import RetryingGenerator, backoff_delay


class DictProgress:
  def __init__(self, *items: ItemProgress) -> None:
    self.items = {item.temp_id: item for item in items}
    self.updates: list[ItemProgress] = []

  def get(self, temp_id: str) -> ItemProgress:
    return self.items[temp_id]

  def update(self, item: ItemProgress) -> None:
    self.items[item.temp_id] = item
    self.updates.append(item)


class FlakyAttempt:
  """Fails a fixed number of times before succeeding."""

  def __init__(self, failures: int) -> None:
    self.failures = failures
    self.calls = 0

  async def run(self, item: WorkItem) -> AttemptOutcome:
    self.calls += 1
    if self.calls <= self.failures:
      raise AttemptError(f"provider error {self.calls}", metrics=ScriptedModel().metrics())
    artifact = GeneratedArtifact(temp_id="ignored", quiz_type="basic", name="Fraction Practice", subject="Mathematics", topic="Fractions", items=[{"id": "q1"}])
    return AttemptOutcome(artifact=artifact, metrics=ScriptedModel().metrics())


def _work_item() -> WorkItem:
  return WorkItem(index=0, temp_id="temp-1", item_number=1, quiz_type="basic", context="context")


def test_backoff_delays_are_exponential_and_non_decreasing() -> None:
  delays = [backoff_delay(index, 1.0) for index in range(5)]

  assert delays == [1.0, 2.0, 4.0, 8.0, 16.0]
  assert delays == sorted(delays)
  assert backoff_delay(2, 0.5) == 2.0


@pytest.mark.anyio
async def test_success_after_retries_records_retry_count_and_backoff() -> None:
  progress = DictProgress(ItemProgress(temp_id="temp-1", item_number=1, status="generating"))
  sleep = RecordingSleep()
  generator = RetryingGenerator(attempt=FlakyAttempt(failures=2), progress=progress, provider="openai", model="gpt-test", max_retries=5, backoff_seconds=1.0, sleep=sleep)

  artifact = await generator.generate(_work_item())

  assert artifact is not None
  assert artifact.temp_id == "temp-1"
  assert artifact.status == "draft"
  assert artifact.retry_count == 2
  assert sleep.delays == [1.0, 2.0]
  assert artifact.analytics is not None
  assert [attempt.success for attempt in artifact.analytics.attempts] == [False, False, True]
  assert artifact.analytics.totals.retry_count == 2
  assert progress.get("temp-1").retry_count == 2
  assert progress.get("temp-1").error is None


@pytest.mark.anyio
async def test_exhaustion_stores_last_error_without_sleeping_after_final_attempt() -> None:
  progress = DictProgress(ItemProgress(temp_id="temp-1", item_number=1, status="generating"))
  sleep = RecordingSleep()
  attempt = FlakyAttempt(failures=10)
  generator = RetryingGenerator(attempt=attempt, progress=progress, provider="openai", model="gpt-test", max_retries=3, backoff_seconds=1.0, sleep=sleep)

  artifact = await generator.generate(_work_item())

  assert artifact is None
  assert attempt.calls == 3
  assert sleep.delays == [1.0, 2.0]
  state = progress.get("temp-1")
  assert state.retry_count == 2
  assert state.error == "provider error 3"
  assert state.analytics.totals.attempt_count == 3
  assert state.analytics.totals.successful_attempts == 0
  # Failed attempts still report the tokens the provider charged.
  assert state.analytics.totals.total_tokens == 450


@pytest.mark.anyio
async def test_retry_count_never_exceeds_max_minus_one() -> None:
  progress = DictProgress(ItemProgress(temp_id="temp-1", item_number=1))
  generator = RetryingGenerator(attempt=FlakyAttempt(failures=99), progress=progress, provider="openai", model="gpt-test", max_retries=4, sleep=RecordingSleep())

  await generator.generate(_work_item())

  assert max(update.retry_count for update in progress.updates) == 3


@pytest.mark.anyio
async def test_failure_type_does_not_change_the_policy() -> None:
  class Unexpected:
    calls = 0

    async def run(self, item: WorkItem) -> AttemptOutcome:
      self.calls += 1
      raise KeyError("missing field")

  attempt = Unexpected()
  progress = DictProgress(replace(ItemProgress(temp_id="temp-1", item_number=1), status="generating"))
  generator = RetryingGenerator(attempt=attempt, progress=progress, provider="openai", model="gpt-test", max_retries=2, sleep=RecordingSleep())

  assert await generator.generate(_work_item()) is None
  assert attempt.calls == 2
  assert progress.get("temp-1").analytics.attempts[0].provider == "openai"
