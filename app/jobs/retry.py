"""Bounded retry with exponential backoff around a generation attempt."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import replace
from typing import Protocol

from app.jobs.attempt import Attempter, WorkItem
from app.jobs.errors import ItemExhaustedError
from app.jobs.models import AttemptAnalytics, GeneratedArtifact, ItemProgress, TokenUsage, utc_now_iso

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


class ProgressSink(Protocol):
  def get(self, temp_id: str) -> ItemProgress: ...

  def update(self, item: ItemProgress) -> None: ...


def backoff_delay(attempt_index: int, unit_seconds: float) -> float:
  """Delay before the attempt following `attempt_index` (0-based)."""
  return (2**attempt_index) * unit_seconds


class RetryingGenerator:
  """Run up to `max_retries` attempts for one item, recording analytics for each."""

  def __init__(self, *, attempt: Attempter, progress: ProgressSink, provider: str, model: str, max_retries: int = 5, backoff_seconds: float = 1.0, sleep: SleepFn = asyncio.sleep) -> None:
    self._attempt = attempt
    self._progress = progress
    self._provider = provider
    self._model = model
    self._max_retries = max(1, max_retries)
    self._backoff_seconds = backoff_seconds
    self._sleep = sleep

  async def generate(self, item: WorkItem) -> GeneratedArtifact | None:
    """Return the artifact from the first successful attempt, or None once attempts run out."""
    state = self._progress.get(item.temp_id)
    last_error = "Generation failed after multiple retries"

    for attempt_index in range(self._max_retries):
      # retry_count counts the retries so far, never the first attempt.
      state = replace(state, retry_count=attempt_index)
      if attempt_index > 0:
        self._progress.update(state)

      # Every failure is retried the same way, whatever its cause.
      started_at = utc_now_iso()
      started = time.perf_counter()
      try:
        outcome = await self._attempt.run(item)
      except Exception as exc:  # noqa: BLE001
        last_error = str(exc) or exc.__class__.__name__
        # Provider errors carry call metrics; local failures only have wall time.
        metrics = getattr(exc, "metrics", None)
        record = AttemptAnalytics(
          attempt_number=attempt_index + 1,
          success=False,
          provider=metrics.provider if metrics else self._provider,
          model=metrics.model if metrics else self._model,
          llm_latency_ms=metrics.llm_latency_ms if metrics else int((time.perf_counter() - started) * 1000),
          usage=metrics.usage if metrics else TokenUsage(),
          started_at=started_at,
          completed_at=utc_now_iso(),
          error=last_error,
        )
        state = replace(state, analytics=state.analytics.with_attempt(record))
        logger.warning("Attempt %d/%d failed for quiz %d: %s", attempt_index + 1, self._max_retries, item.item_number, last_error)

        # No wait after the final attempt.
        if attempt_index < self._max_retries - 1:
          await self._sleep(backoff_delay(attempt_index, self._backoff_seconds))
        continue

      metrics = outcome.metrics
      record = AttemptAnalytics(attempt_number=attempt_index + 1, success=True, provider=metrics.provider, model=metrics.model, llm_latency_ms=metrics.llm_latency_ms, usage=metrics.usage, started_at=started_at, completed_at=utc_now_iso())
      state = replace(state, analytics=state.analytics.with_attempt(record), error=None)
      self._progress.update(state)

      # Stamp the identity and review state owned by the job.
      artifact = outcome.artifact
      artifact.temp_id = item.temp_id
      artifact.status = "draft"
      artifact.retry_count = attempt_index
      artifact.analytics = state.analytics
      return artifact

    # Exhausted: the error stays on the item, the job carries on.
    exhausted = ItemExhaustedError(item.item_number, self._max_retries, last_error)
    logger.error("%s", exhausted)
    self._progress.update(replace(state, error=last_error))
    return None
