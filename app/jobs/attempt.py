"""A single provider call turned into a validated quiz draft."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Protocol

import msgspec

from app.ai.normalize import IdFactory, normalize_quiz
from app.ai.prompts import build_system_prompt, build_user_prompt
from app.ai.providers.base import AIModel, LLMCallMetrics, LLMGenerationError
from app.jobs.errors import AttemptError
from app.jobs.models import GeneratedArtifact, GenerationConfig, QuizType, utc_now_iso
from app.schema.artifacts import decode_raw_quiz
from app.services.quiz_store import CrosswordLayout
from app.services.rules_client import QuizRules
from app.utils.ids import generate_item_id, generate_temp_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkItem:
  """Everything one worker needs to generate item `index`."""

  index: int
  temp_id: str
  item_number: int
  quiz_type: QuizType
  context: str


@dataclass(frozen=True)
class AttemptOutcome:
  artifact: GeneratedArtifact
  metrics: LLMCallMetrics


class CrosswordLayouter(Protocol):
  async def generate_crossword(self, entries: list[dict[str, Any]]) -> CrosswordLayout: ...


class Attempter(Protocol):
  async def run(self, item: WorkItem) -> AttemptOutcome: ...


class GenerationAttempt:
  """Prompt, call, validate and normalize one quiz."""

  def __init__(self, *, model: AIModel, rules: QuizRules, config: GenerationConfig, crossword: CrosswordLayouter | None = None, id_factory: IdFactory = generate_item_id) -> None:
    self._model = model
    self._rules = rules
    self._config = config
    self._crossword = crossword
    self._id_factory = id_factory

  async def run(self, item: WorkItem) -> AttemptOutcome:
    """Raise AttemptError on any failure so the retry policy can count it."""
    try:
      system_prompt = build_system_prompt(self._config, quiz_type=item.quiz_type, item_number=item.item_number, rules=self._rules)
      user_prompt = build_user_prompt(item.context, self._config, quiz_type=item.quiz_type, item_number=item.item_number, rules=self._rules)
    except ValueError as exc:
      raise AttemptError(str(exc)) from exc

    try:
      result = await self._model.generate_json(system_prompt=system_prompt, user_prompt=user_prompt)
    except LLMGenerationError as exc:
      raise AttemptError(str(exc), metrics=exc.metrics) from exc

    # Tokens were spent even when the payload is unusable, so keep the call metrics.
    try:
      raw = decode_raw_quiz(result.parsed, item.quiz_type)
      normalized = normalize_quiz(raw, self._config, quiz_type=item.quiz_type, item_number=item.item_number, id_factory=self._id_factory)
    except (msgspec.ValidationError, ValueError, json.JSONDecodeError) as exc:
      raise AttemptError(f"Invalid quiz payload: {exc}", metrics=result.metrics) from exc

    now = utc_now_iso()
    artifact = GeneratedArtifact(
      temp_id=generate_temp_id(),
      quiz_type=item.quiz_type,
      name=normalized.name,
      subject=normalized.subject,
      topic=normalized.topic,
      items=normalized.items,
      total_time_limit=normalized.total_time_limit,
      created_at=now,
      updated_at=now,
    )
    if item.quiz_type == "crossword":
      await self._lay_out_crossword(artifact)
    return AttemptOutcome(artifact=artifact, metrics=result.metrics)

  async def _lay_out_crossword(self, artifact: GeneratedArtifact) -> None:
    """Move crossword entries out of `items`, placing them on a grid when possible."""
    entries = artifact.items
    artifact.items = []
    if self._crossword is None:
      artifact.entries = entries
      return

    layout = await self._crossword.generate_crossword(entries)
    artifact.entries = layout.entries
    if layout.grid:
      artifact.grid = layout.grid
      artifact.placed_entries = layout.entries
