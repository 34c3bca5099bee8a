"""Client for the quiz service structure-and-rules endpoint."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from app.config import Settings
from app.jobs.errors import RulesUnavailableError

logger = logging.getLogger(__name__)

RULES_PATH = "/quiz/structure-and-rules"


@dataclass(frozen=True)
class QuizRules:
  """Quiz types and per-type prompting rules published by the quiz service."""

  quiz_types: tuple[str, ...]
  schemas: dict[str, dict[str, Any]] = field(default_factory=dict)
  source: str = "remote"

  @classmethod
  def from_payload(cls, payload: dict[str, Any], *, source: str = "remote") -> QuizRules:
    quiz_types = payload.get("quizTypes") or []
    schemas = payload.get("schemas") or {}
    if not isinstance(quiz_types, list) or not isinstance(schemas, dict):
      raise RulesUnavailableError("Quiz service returned malformed structure and rules.")
    return cls(quiz_types=tuple(str(quiz_type) for quiz_type in quiz_types), schemas=schemas, source=source)

  def _prompting_rules(self, quiz_type: str) -> dict[str, Any]:
    schema = self.schemas.get(quiz_type) or {}
    rules = schema.get("aiPromptingRules") if isinstance(schema, dict) else None
    return rules if isinstance(rules, dict) else {}

  def system_prompt(self, quiz_type: str) -> str:
    """Return the canonical system prompt for a quiz type or raise."""
    prompt = str(self._prompting_rules(quiz_type).get("systemPrompt") or "").strip()
    if not prompt:
      raise ValueError(f'Missing AI system prompt in quiz schema for quizType "{quiz_type}".')
    return prompt

  def format_instructions(self, quiz_type: str) -> str:
    """Return the JSON format instructions for a quiz type or raise."""
    instructions = str(self._prompting_rules(quiz_type).get("formatInstructions") or "")
    if not instructions.strip():
      raise ValueError(f'Missing AI format instructions for quiz type "{quiz_type}".')
    return instructions


_FALLBACK_SYSTEM_PROMPT = "You are an expert primary school teacher who writes clear, accurate and engaging quizzes. Always respond with a single valid JSON object."

FALLBACK_RULES = QuizRules(
  quiz_types=("basic", "rapid", "crossword", "true-false"),
  source="fallback",
  schemas={
    "basic": {
      "description": "Mixed multiple-choice and open-ended questions.",
      "aiPromptingRules": {
        "systemPrompt": f"{_FALLBACK_SYSTEM_PROMPT} Write a basic quiz mixing multiple-choice and open-ended questions.",
        "formatInstructions": (
          'Return JSON: {"name": string, "topic": string, "totalTimeLimit": number | null, "items": ['
          '{"type": "mc", "text": string, "timeLimit": number, "options": [{"text": string, "correct": boolean}]} | '
          '{"type": "open", "text": string, "timeLimit": number, "answers": [{"answerType": "exact" | "keywords" | "list", "text": string, '
          '"keywords": [string], "minKeywords": number, "listItems": [string], "minCorrectItems": number, "requireOrder": boolean}]}]}'
        ),
      },
    },
    "rapid": {
      "description": "Fast multiple-choice questions with short timers.",
      "aiPromptingRules": {
        "systemPrompt": f"{_FALLBACK_SYSTEM_PROMPT} Write a rapid-fire multiple-choice quiz with short, quick-to-read questions.",
        "formatInstructions": 'Return JSON: {"name": string, "topic": string, "totalTimeLimit": number | null, "items": [{"type": "mc", "text": string, "timeLimit": number, "options": [{"text": string, "correct": boolean}]}]}',
      },
    },
    "crossword": {
      "description": "Crossword entries with single-word answers and clues.",
      "aiPromptingRules": {
        "systemPrompt": f"{_FALLBACK_SYSTEM_PROMPT} Write crossword entries whose answers are single words without spaces.",
        "formatInstructions": 'Return JSON: {"name": string, "topic": string, "totalTimeLimit": number | null, "entries": [{"answer": string, "clue": string}]}',
      },
    },
    "true-false": {
      "description": "True or false statements.",
      "aiPromptingRules": {
        "systemPrompt": f"{_FALLBACK_SYSTEM_PROMPT} Write clear true-or-false statements with an explicit boolean answer.",
        "formatInstructions": 'Return JSON: {"name": string, "topic": string, "totalTimeLimit": number | null, "items": [{"text": string, "correctAnswer": boolean, "timeLimit": number}]}',
      },
    },
  },
)


class RulesClient:
  """Fetch structure and prompting rules, falling back to built-in rules when allowed."""

  def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
    self._base_url = settings.quiz_service_url
    self._timeout = settings.rules_timeout_seconds
    self._fallback_enabled = settings.rules_fallback_enabled
    self._transport = transport

  async def fetch(self) -> QuizRules:
    """Fetch remote rules; failures raise RulesUnavailableError."""
    url = f"{self._base_url}{RULES_PATH}"
    try:
      async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout, trust_env=False) as client:
        response = await client.get(url)
        response.raise_for_status()
        body = response.json()
    except httpx.HTTPStatusError as exc:
      raise RulesUnavailableError(f"Quiz service returned {exc.response.status_code} for structure and rules.") from exc
    except (httpx.RequestError, ValueError) as exc:
      raise RulesUnavailableError(f"Failed to fetch quiz structure and rules: {exc}") from exc

    payload = body.get("structureAndRules") if isinstance(body, dict) else None
    if not isinstance(payload, dict):
      raise RulesUnavailableError("Quiz service response is missing structureAndRules.")
    return QuizRules.from_payload(payload)

  async def fetch_or_fallback(self) -> QuizRules:
    """Fetch remote rules, using the built-in schema when the service is unreachable."""
    try:
      return await self.fetch()
    except RulesUnavailableError as exc:
      if not self._fallback_enabled:
        raise
      logger.warning("Quiz rules unavailable, using built-in fallback: %s", exc)
      return FALLBACK_RULES
