"""Job-level analytics assembled from per-item attempt histories."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from app.jobs.models import AnalyticsTotals, AttemptAnalytics, ItemAnalytics, JobAnalytics, PlanningAnalytics, ProviderModelAnalytics, utc_now_iso


def _group_key(provider: str, model: str) -> str:
  return f"{provider}:{model}"


def build_job_analytics(items: Iterable[ItemAnalytics], *, planning: PlanningAnalytics | None = None, generated_at: str | None = None) -> JobAnalytics:
  """Sum every attempt of every item, then fold in the planning pass."""
  attempts: list[AttemptAnalytics] = [attempt for item in items for attempt in item.attempts]
  totals = AnalyticsTotals.from_attempts(attempts)

  groups: dict[str, dict[str, Any]] = {}
  for attempt in attempts:
    group = groups.setdefault(_group_key(attempt.provider, attempt.model), _empty_group(attempt.provider, attempt.model))
    group["attempt_count"] += 1
    group["successful_attempts"] += 1 if attempt.success else 0
    group["llm_latency_ms"] += attempt.llm_latency_ms
    group["input_tokens"] += attempt.usage.input_tokens
    group["output_tokens"] += attempt.usage.output_tokens
    group["total_tokens"] += attempt.usage.total_tokens

  if planning is not None:
    totals = AnalyticsTotals(
      attempt_count=totals.attempt_count + planning.attempt_count,
      successful_attempts=totals.successful_attempts + planning.successful_attempts,
      retry_count=totals.retry_count + planning.retry_count,
      llm_latency_ms=totals.llm_latency_ms + planning.llm_latency_ms,
      input_tokens=totals.input_tokens + planning.usage.input_tokens,
      output_tokens=totals.output_tokens + planning.usage.output_tokens,
      total_tokens=totals.total_tokens + planning.usage.total_tokens,
    )
    group = groups.setdefault(_group_key(planning.provider, planning.model), _empty_group(planning.provider, planning.model))
    group["attempt_count"] += planning.attempt_count
    group["successful_attempts"] += planning.successful_attempts
    group["llm_latency_ms"] += planning.llm_latency_ms
    group["input_tokens"] += planning.usage.input_tokens
    group["output_tokens"] += planning.usage.output_tokens
    group["total_tokens"] += planning.usage.total_tokens

  by_provider_model = tuple(ProviderModelAnalytics(**group) for _, group in sorted(groups.items()))
  return JobAnalytics(totals=totals, by_provider_model=by_provider_model, generated_at=generated_at or utc_now_iso(), planning=planning)


def _empty_group(provider: str, model: str) -> dict[str, Any]:
  return {"provider": provider, "model": model, "attempt_count": 0, "successful_attempts": 0, "llm_latency_ms": 0, "input_tokens": 0, "output_tokens": 0, "total_tokens": 0}
