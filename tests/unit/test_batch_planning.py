from __future__ import annotations

import pytest
from conftest import RecordingSleep, ScriptedModel, build_config

from app.jobs.planning import PlanningPass, build_guided_context, normalize_batch_plan


def _plan_entry(number: int, quiz_type: str = "basic", **overrides) -> dict:
  entry = {"quizNumber": number, "quizType": quiz_type, "focus": f"Focus {number}", "angle": "Visual models", "mustCover": ["equivalence"], "avoidOverlap": [{"text": "decimals"}]}
  entry.update(overrides)
  return entry


def test_plan_accepts_nested_shape_and_orders_by_quiz_number() -> None:
  parsed = {"plan": {"quizzes": [_plan_entry(2, "rapid"), _plan_entry(1)]}}

  items = normalize_batch_plan(parsed, 2, ["basic", "rapid"])

  assert [item.quiz_number for item in items] == [1, 2]
  assert items[1].quiz_type == "rapid"
  assert items[0].avoid_overlap == ("decimals",)


@pytest.mark.parametrize(
  ("quizzes", "message"),
  [
    ([], "empty quizzes"),
    ([_plan_entry(1)], "missing blueprint item for quizNumber 2"),
    ([_plan_entry(1), _plan_entry(2, "crossword")], "quizType mismatch"),
    ([_plan_entry(1), _plan_entry(2, focus="focus 1")], "Duplicate focus"),
    ([_plan_entry(1), _plan_entry(2, mustCover=[])], "mustCover"),
  ],
)
def test_invalid_plans_are_rejected(quizzes: list, message: str) -> None:
  with pytest.raises(ValueError, match=message):
    normalize_batch_plan({"quizzes": quizzes}, 2, ["basic", "basic"])


def test_guided_context_lists_sibling_focuses() -> None:
  items = normalize_batch_plan({"quizzes": [_plan_entry(1), _plan_entry(2), _plan_entry(3)]}, 3, ["basic"] * 3)

  context = build_guided_context("Original context", items[1], items)

  assert "blueprint item #2" in context
  assert "1: Focus 1; 3: Focus 3" in context
  assert context.endswith("===== SOURCE CONTEXT =====\nOriginal context")


@pytest.mark.anyio
async def test_planning_retries_then_succeeds() -> None:
  calls = {"count": 0}

  def _responder(system_prompt: str, user_prompt: str) -> dict:
    calls["count"] += 1
    if calls["count"] == 1:
      return {"quizzes": []}
    return {"quizzes": [_plan_entry(1), _plan_entry(2)]}

  sleep = RecordingSleep()
  result = await PlanningPass(model=ScriptedModel(_responder), max_retries=3, sleep=sleep).run(config=build_config(item_count=2), contexts=["a", "b"], type_plan=["basic", "basic"])

  assert result.guided
  assert result.analytics.success is True
  assert result.analytics.retry_count == 1
  assert result.analytics.attempt_count == 2
  assert result.analytics.usage.total_tokens == 300
  assert sleep.delays == [1.0]


@pytest.mark.anyio
async def test_planning_exhaustion_reports_fallback() -> None:
  sleep = RecordingSleep()
  result = await PlanningPass(model=ScriptedModel(lambda s, u: {"nope": True}), max_retries=3, sleep=sleep).run(config=build_config(), contexts=["a", "b", "c"], type_plan=["basic"] * 3)

  assert not result.guided
  assert result.analytics.fallback_used is True
  assert result.analytics.successful_attempts == 0
  assert "Planning pass failed after 3 attempt(s)" in result.analytics.error
  assert sleep.delays == [1.0, 2.0]
