"""Optional batch planning pass that assigns each quiz a distinct focus."""

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from app.ai.normalize import normalize_string_array
from app.ai.prompts import build_planning_context, build_planning_system_prompt, build_planning_user_prompt
from app.ai.providers.base import AIModel, LLMGenerationError
from app.jobs.models import GenerationConfig, PlanningAnalytics, TokenUsage, utc_now_iso
from app.jobs.retry import SleepFn, backoff_delay

logger = logging.getLogger(__name__)

_FIELD_MAX_CHARS = 80
_HINT_MAX_CHARS = 120
_MAX_LIST_ENTRIES = 3
_MAX_OTHER_FOCUSES = 8
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class PlanItem:
  quiz_number: int
  quiz_type: str
  focus: str
  angle: str
  must_cover: tuple[str, ...]
  avoid_overlap: tuple[str, ...]
  title_hint: str | None = None
  topic_hint: str | None = None


@dataclass(frozen=True)
class PlanningResult:
  items: tuple[PlanItem, ...]
  analytics: PlanningAnalytics

  @property
  def guided(self) -> bool:
    return bool(self.items)


def _clean(value: Any, limit: int) -> str:
  return _WHITESPACE_RE.sub(" ", str(value or "").strip())[:limit]


def normalize_batch_plan(parsed: dict[str, Any], item_count: int, type_plan: Sequence[str]) -> list[PlanItem]:
  """Validate the blueprint strictly: one item per quiz number, locked types, unique focuses."""
  candidates = parsed.get("quizzes")
  if not isinstance(candidates, list) and isinstance(parsed.get("plan"), dict):
    candidates = parsed["plan"].get("quizzes")
  if not isinstance(candidates, list) or not candidates:
    raise ValueError("Planning pass returned empty quizzes array.")

  by_number: dict[int, dict[str, Any]] = {}
  for candidate in candidates:
    if not isinstance(candidate, dict):
      continue
    try:
      by_number.setdefault(int(candidate.get("quizNumber")), candidate)
    except (TypeError, ValueError):
      continue

  items: list[PlanItem] = []
  seen_focus: set[str] = set()
  for index in range(max(1, item_count)):
    quiz_number = index + 1
    expected_type = type_plan[index] if index < len(type_plan) else (type_plan[0] if type_plan else "basic")
    raw = by_number.get(quiz_number)
    if raw is None:
      raise ValueError(f"Planning pass missing blueprint item for quizNumber {quiz_number}.")

    raw_type = str(raw.get("quizType") or "").strip()
    if raw_type != expected_type:
      raise ValueError(f'Planning pass quizType mismatch for quizNumber {quiz_number}: expected "{expected_type}", got "{raw_type or "<empty>"}".')

    focus = _clean(raw.get("focus"), _FIELD_MAX_CHARS)
    if not focus:
      raise ValueError(f"Planning pass missing required focus for quizNumber {quiz_number}.")
    if focus.lower() in seen_focus:
      raise ValueError(f'Planning pass focus must be unique across quizzes. Duplicate focus: "{focus}".')
    seen_focus.add(focus.lower())

    angle = _clean(raw.get("angle"), _FIELD_MAX_CHARS)
    if not angle:
      raise ValueError(f"Planning pass missing required angle for quizNumber {quiz_number}.")

    lists: dict[str, tuple[str, ...]] = {}
    for field_name in ("mustCover", "avoidOverlap"):
      values = tuple(entry[:_FIELD_MAX_CHARS] for entry in normalize_string_array(raw.get(field_name))[:_MAX_LIST_ENTRIES])
      if not values:
        raise ValueError(f"Planning pass missing required {field_name} for quizNumber {quiz_number}.")
      lists[field_name] = values

    items.append(
      PlanItem(
        quiz_number=quiz_number,
        quiz_type=raw_type,
        focus=focus,
        angle=angle,
        must_cover=lists["mustCover"],
        avoid_overlap=lists["avoidOverlap"],
        title_hint=str(raw.get("titleHint") or "").strip()[:_HINT_MAX_CHARS] or None,
        topic_hint=str(raw.get("topicHint") or "").strip()[:_HINT_MAX_CHARS] or None,
      )
    )
  return items


def build_guided_context(base_context: str, plan_item: PlanItem, all_items: Sequence[PlanItem]) -> str:
  """Prepend the blueprint for one quiz to its source context."""
  siblings = [f"{item.quiz_number}: {item.focus}" for item in all_items if item.quiz_number != plan_item.quiz_number][:_MAX_OTHER_FOCUSES]
  lines = [
    "===== PLANNING PASS BLUEPRINT (MANDATORY) =====",
    f"This quiz must follow blueprint item #{plan_item.quiz_number}.",
    f"- quiz type: {plan_item.quiz_type}",
    f"- focus: {plan_item.focus}",
    f"- angle/style: {plan_item.angle}",
    f"- must cover: {'; '.join(plan_item.must_cover)}",
    f"- avoid overlap: {'; '.join(plan_item.avoid_overlap)}",
  ]
  if plan_item.title_hint:
    lines.append(f"- title hint: {plan_item.title_hint}")
  if plan_item.topic_hint:
    lines.append(f"- topic hint: {plan_item.topic_hint}")
  lines += [
    f"Other quiz focuses in this batch (do not duplicate): {'; '.join(siblings) or 'N/A'}",
    "You must prioritize this blueprint while staying faithful to source context.",
    "Source context can contain unrelated sections; use only parts relevant to teacher instructions and this quiz blueprint.",
    "",
    "===== SOURCE CONTEXT =====",
    base_context,
  ]
  return "\n".join(lines)


class PlanningPass:
  """One JSON call producing a per-quiz blueprint, retried with backoff.

  Failure never raises: the result carries `fallback_used=True` analytics and
  no items, and generation proceeds with unguided contexts.
  """

  def __init__(self, *, model: AIModel, max_retries: int = 3, backoff_seconds: float = 1.0, sleep: SleepFn = asyncio.sleep) -> None:
    self._model = model
    self._max_retries = max(1, max_retries)
    self._backoff_seconds = backoff_seconds
    self._sleep = sleep

  async def run(self, *, config: GenerationConfig, contexts: Sequence[str], type_plan: Sequence[str]) -> PlanningResult:
    started_at = utc_now_iso()
    planning_context = build_planning_context(config.instructions, contexts)
    system_prompt = build_planning_system_prompt(config, type_plan)
    user_prompt = build_planning_user_prompt(planning_context, config, type_plan)

    successes = 0
    latency_ms = 0
    usage = TokenUsage()
    provider, model = self._model.provider, self._model.name
    last_error = "Failed to build batch plan"

    for attempt_index in range(self._max_retries):
      attempt_started = time.perf_counter()
      metrics = None
      try:
        result = await self._model.generate_json(system_prompt=system_prompt, user_prompt=user_prompt)
        metrics = result.metrics
        items = normalize_batch_plan(result.parsed, config.item_count, type_plan)
      except (LLMGenerationError, ValueError) as exc:
        metrics = metrics or getattr(exc, "metrics", None)
        last_error = str(exc)
        latency_ms += metrics.llm_latency_ms if metrics else int((time.perf_counter() - attempt_started) * 1000)
        usage = _add_usage(usage, metrics.usage if metrics else TokenUsage())
        if attempt_index < self._max_retries - 1:
          logger.warning("Planning pass attempt %d/%d failed. Retrying: %s", attempt_index + 1, self._max_retries, last_error)
          await self._sleep(backoff_delay(attempt_index, self._backoff_seconds))
        continue

      successes += 1
      latency_ms += metrics.llm_latency_ms
      usage = _add_usage(usage, metrics.usage)
      analytics = PlanningAnalytics(
        success=True,
        fallback_used=False,
        attempt_count=attempt_index + 1,
        successful_attempts=successes,
        retry_count=attempt_index,
        provider=metrics.provider,
        model=metrics.model,
        llm_latency_ms=latency_ms,
        usage=usage,
        started_at=started_at,
        completed_at=utc_now_iso(),
        plan_item_count=len(items),
      )
      return PlanningResult(items=tuple(items), analytics=analytics)

    message = f"Planning pass failed after {self._max_retries} attempt(s): {last_error}"
    logger.error("%s; continuing with unguided contexts", message)
    analytics = PlanningAnalytics(
      success=False,
      fallback_used=True,
      attempt_count=self._max_retries,
      successful_attempts=0,
      retry_count=self._max_retries,
      provider=provider,
      model=model,
      llm_latency_ms=latency_ms,
      usage=usage,
      started_at=started_at,
      completed_at=utc_now_iso(),
      error=message,
    )
    return PlanningResult(items=(), analytics=analytics)


def _add_usage(left: TokenUsage, right: TokenUsage) -> TokenUsage:
  return TokenUsage(input_tokens=left.input_tokens + right.input_tokens, output_tokens=left.output_tokens + right.output_tokens, total_tokens=left.total_tokens + right.total_tokens)
