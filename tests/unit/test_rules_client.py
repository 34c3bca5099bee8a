from __future__ import annotations

import httpx
import pytest
from conftest import build_settings

from app.jobs.errors import RulesUnavailableError
from app.services.rules_client import FALLBACK_RULES, RULES_PATH, QuizRules, RulesClient

_REMOTE = {
  "structureAndRules": {
    "quizTypes": ["basic", "rapid"],
    "schemas": {"basic": {"aiPromptingRules": {"systemPrompt": "Remote basic prompt", "formatInstructions": "Return JSON."}}},
  }
}


def _client(handler, **overrides) -> RulesClient:
  return RulesClient(build_settings(**overrides), transport=httpx.MockTransport(handler))


@pytest.mark.anyio
async def test_fetch_reads_structure_and_rules() -> None:
  seen: list[str] = []

  def _handler(request: httpx.Request) -> httpx.Response:
    seen.append(str(request.url))
    return httpx.Response(200, json=_REMOTE)

  rules = await _client(_handler).fetch()

  assert seen == [f"http://quiz-service.test{RULES_PATH}"]
  assert rules.quiz_types == ("basic", "rapid")
  assert rules.source == "remote"
  assert rules.system_prompt("basic") == "Remote basic prompt"


@pytest.mark.anyio
async def test_fetch_or_fallback_uses_built_in_rules_on_error() -> None:
  rules = await _client(lambda request: httpx.Response(500)).fetch_or_fallback()

  assert rules is FALLBACK_RULES
  assert rules.source == "fallback"


@pytest.mark.anyio
async def test_fallback_disabled_propagates_the_outage() -> None:
  with pytest.raises(RulesUnavailableError, match="returned 502"):
    await _client(lambda request: httpx.Response(502), rules_fallback_enabled=False).fetch_or_fallback()


@pytest.mark.anyio
async def test_response_without_rules_payload_is_unusable() -> None:
  with pytest.raises(RulesUnavailableError, match="missing structureAndRules"):
    await _client(lambda request: httpx.Response(200, json={"ok": True})).fetch()


def test_missing_prompting_rules_raise() -> None:
  rules = QuizRules(quiz_types=("basic",), schemas={"basic": {"aiPromptingRules": {"systemPrompt": "  "}}})

  with pytest.raises(ValueError, match="Missing AI system prompt"):
    rules.system_prompt("basic")
  with pytest.raises(ValueError, match="format instructions"):
    rules.format_instructions("rapid")


def test_malformed_payload_is_rejected() -> None:
  with pytest.raises(RulesUnavailableError):
    QuizRules.from_payload({"quizTypes": "basic"})


def test_fallback_rules_cover_every_quiz_type() -> None:
  for quiz_type in ("basic", "rapid", "crossword", "true-false"):
    assert FALLBACK_RULES.system_prompt(quiz_type)
    assert FALLBACK_RULES.format_instructions(quiz_type)
