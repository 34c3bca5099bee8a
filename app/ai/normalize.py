"""Normalization of validated LLM quiz payloads into stored artifact fields."""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from app.ai.prompts import expected_question_count
from app.jobs.models import GenerationConfig
from app.schema.artifacts import RawCrosswordEntry, RawCrosswordQuiz, RawMcItem, RawOpenAnswer, RawOpenItem, RawOption, RawQuiz, RawTrueFalseItem, RawTrueFalseQuiz
from app.utils.ids import generate_item_id

logger = logging.getLogger(__name__)

OPEN_ANSWER_TYPES = frozenset({"exact", "keywords", "list"})
DEFAULT_ITEM_TIME_LIMIT = 10
SECONDS_PER_QUESTION = 120

_TRUE_WORDS = frozenset({"true", "t", "yes", "y", "1"})
_FALSE_WORDS = frozenset({"false", "f", "no", "n", "0"})
_STRING_ENTRY_FIELDS = ("text", "value", "label", "item", "name", "answer")
_BATCH_MARKER_PATTERNS = (
  re.compile(r"\bquiz\s*#?\s*\d+\b", re.IGNORECASE),
  re.compile(r"\(\s*\d+\s*/\s*\d+\s*\)"),
  re.compile(r"#\s*\d+\b"),
  re.compile(r"\b\d+\s*/\s*\d+\b"),
)

IdFactory = Callable[[], str]


@dataclass(frozen=True)
class NormalizedQuiz:
  quiz_type: str
  name: str
  subject: str
  topic: str
  items: list[dict[str, Any]]
  total_time_limit: int | None


def parse_boolean_like(value: Any) -> bool | None:
  """Interpret booleans, 0/1 and common yes/no strings; None when ambiguous."""
  if isinstance(value, bool):
    return value
  if isinstance(value, (int, float)):
    if value == 1:
      return True
    if value == 0:
      return False
    return None
  if isinstance(value, str):
    normalized = value.strip().lower()
    if normalized in _TRUE_WORDS:
      return True
    if normalized in _FALSE_WORDS:
      return False
  return None


def _string_entry(entry: Any) -> str | None:
  if isinstance(entry, (str, int, float, bool)):
    return str(entry).strip() or None
  if isinstance(entry, dict):
    for key in _STRING_ENTRY_FIELDS:
      candidate = entry.get(key)
      if isinstance(candidate, (str, int, float, bool)) and str(candidate).strip():
        return str(candidate).strip()
  return None


def normalize_string_array(value: Any) -> list[str]:
  """Flatten a list of strings or `{text|value|label...}` objects into plain strings."""
  if not isinstance(value, list):
    return []
  return [entry for entry in (_string_entry(raw) for raw in value) if entry]


def contains_batch_marker(value: str) -> bool:
  """Return True for numbering like "Quiz 2", "(2/5)", "#3" or "4/5"."""
  return any(pattern.search(value or "") for pattern in _BATCH_MARKER_PATTERNS)


def _stable_id(raw_id: Any, id_factory: IdFactory) -> str:
  if raw_id is None or str(raw_id).strip() == "":
    return id_factory()
  return str(raw_id)


def _normalize_option(option: RawOption, id_factory: IdFactory) -> dict[str, Any]:
  return {"id": _stable_id(option.id, id_factory), "text": str(option.text), "correct": bool(parse_boolean_like(option.correct))}


def _normalize_open_answer(answer: RawOpenAnswer, id_factory: IdFactory) -> dict[str, Any] | None:
  """Return a graded answer dict, or None when the answer is unusable."""
  answer_type = str(answer.answer_type or "").strip().lower()
  if answer_type not in OPEN_ANSWER_TYPES:
    return None

  text = str(answer.text if answer.text is not None else "").strip()
  if answer_type == "exact" and not text:
    return None

  # Keywords and list answers grade through their own fields.
  normalized: dict[str, Any] = {"id": _stable_id(answer.id, id_factory), "answerType": answer_type, "caseSensitive": bool(answer.case_sensitive), "text": text if answer_type == "exact" else ""}

  if answer_type == "keywords":
    keywords = normalize_string_array(answer.keywords)
    if not keywords:
      return None
    if answer.min_keywords is not None and math.isfinite(answer.min_keywords):
      requested = math.floor(answer.min_keywords)
    else:
      requested = math.ceil(len(keywords) * 0.6)
    normalized["keywords"] = keywords
    normalized["minKeywords"] = max(1, min(requested, len(keywords)))
  elif answer_type == "list":
    list_items = normalize_string_array(answer.list_items)
    if not list_items:
      return None
    if answer.min_correct_items is not None and math.isfinite(answer.min_correct_items):
      requested = math.floor(answer.min_correct_items)
    else:
      requested = len(list_items)
    normalized["listItems"] = list_items
    normalized["requireOrder"] = bool(answer.require_order) if answer.require_order is not None else False
    normalized["minCorrectItems"] = max(1, min(requested, len(list_items)))

  return normalized


def _infer_true_correct(item: RawTrueFalseItem) -> bool | None:
  for candidate in (item.correct_answer, item.answer, item.correct, item.is_true, item.is_correct_true, item.label):
    parsed = parse_boolean_like(candidate)
    if parsed is not None:
      return parsed

  # Fall back to explicit True/False options.
  options = item.options or []
  true_option = next((option for option in options if str(option.text).strip().lower() == "true"), None)
  false_option = next((option for option in options if str(option.text).strip().lower() == "false"), None)
  true_correct = parse_boolean_like(true_option.correct) if true_option else None
  false_correct = parse_boolean_like(false_option.correct) if false_option else None
  if true_correct is not None:
    return true_correct
  if false_correct is not None:
    return not false_correct
  return None


def _normalize_true_false(item: RawTrueFalseItem, id_factory: IdFactory) -> dict[str, Any]:
  true_correct = _infer_true_correct(item)
  if true_correct is None:
    raise ValueError("True/False item is missing explicit boolean answer correctness.")

  text = next((candidate.strip() for candidate in (item.text, item.question, item.statement, item.prompt, item.title) if candidate and candidate.strip()), "")
  if not text:
    raise ValueError("True/False item is missing question text.")

  item_id = _stable_id(item.id, id_factory)
  return {
    "id": item_id,
    "type": "mc",
    "text": text,
    "timeLimit": int(item.time_limit) if item.time_limit else DEFAULT_ITEM_TIME_LIMIT,
    "image": item.image,
    "options": [{"id": f"{item_id}:true", "text": "True", "correct": true_correct}, {"id": f"{item_id}:false", "text": "False", "correct": not true_correct}],
  }


def _normalize_crossword_entry(entry: RawCrosswordEntry, id_factory: IdFactory) -> dict[str, Any]:
  answer = re.sub(r"\s+", "", str(entry.answer)).upper()
  return {"id": _stable_id(entry.id, id_factory), "answer": answer, "clue": entry.clue or "", "positions": [], "direction": None}


def normalize_items(raw: RawQuiz, quiz_type: str, *, id_factory: IdFactory = generate_item_id) -> list[dict[str, Any]]:
  """Assign stable ids and reshape items per quiz type.

  Open items without any valid answer are dropped rather than failing the quiz.
  """
  if isinstance(raw, RawTrueFalseQuiz):
    return [_normalize_true_false(item, id_factory) for item in raw.items]

  if isinstance(raw, RawCrosswordQuiz):
    return [_normalize_crossword_entry(entry, id_factory) for entry in (raw.entries or raw.items)]

  items: list[dict[str, Any]] = []
  for item in raw.items:
    base = {"id": _stable_id(item.id, id_factory), "type": "mc", "text": item.text, "timeLimit": int(item.time_limit) if item.time_limit else DEFAULT_ITEM_TIME_LIMIT, "image": item.image}
    if isinstance(item, RawMcItem):
      items.append({**base, "options": [_normalize_option(option, id_factory) for option in item.options]})
      continue

    if isinstance(item, RawOpenItem):
      answers = [_normalize_open_answer(answer, id_factory) for answer in item.answers]
      if not answers or any(answer is None for answer in answers):
        logger.debug("Dropping open item without valid answers: %s", item.text[:60])
        continue
      items.append({**base, "type": "open", "answers": answers})
  return items


def enforce_question_count(items: list[dict[str, Any]], expected: int, *, label: str) -> list[dict[str, Any]]:
  """Truncate extra items and reject empty output; underfilled output is kept."""
  if len(items) > expected:
    logger.warning("%s produced %d items, truncating to %d.", label, len(items), expected)
    return items[:expected]
  if not items:
    raise ValueError(f"{label} produced 0 items.")
  if len(items) < expected:
    logger.warning("%s produced %d items (requested %d); keeping underfilled output.", label, len(items), expected)
  return items


def default_time_limit(config: GenerationConfig) -> int | None:
  timer = config.timer_settings
  if timer is not None and timer.type == "none":
    return None
  if timer is not None and timer.type == "custom" and timer.default_seconds:
    return int(timer.default_seconds)
  return max(1, config.questions_per_quiz) * SECONDS_PER_QUESTION


def resolve_name(raw_name: str | None, subject: str, topic: str) -> str:
  name = (raw_name or "").strip()
  if not name or name == "Quiz" or len(name) < 3:
    return f"{subject}: {topic} Quiz"
  return name


def validate_true_false_balance(items: list[dict[str, Any]], *, label: str) -> None:
  """A multi-item true/false quiz must include both True and False answers."""
  true_count = sum(1 for item in items if any(option.get("text") == "True" and option.get("correct") for option in item.get("options") or []))
  false_count = len(items) - true_count
  if len(items) > 1 and (true_count == 0 or false_count == 0):
    raise ValueError(f"{label} generated one-sided answer key.")


def normalize_quiz(raw: RawQuiz, config: GenerationConfig, *, quiz_type: str, item_number: int, id_factory: IdFactory = generate_item_id) -> NormalizedQuiz:
  """Apply id assignment, count enforcement, timing and metadata rules."""
  label = f"Quiz #{item_number} ({quiz_type})"
  items = normalize_items(raw, quiz_type, id_factory=id_factory)
  items = enforce_question_count(items, expected_question_count(quiz_type, config.questions_per_quiz), label=label)

  if raw.total_time_limit and math.isfinite(raw.total_time_limit):
    total_time_limit: int | None = int(raw.total_time_limit)
  else:
    total_time_limit = default_time_limit(config)

  subject = config.subject.strip()
  if not subject:
    raise ValueError(f"{label} missing required selected subject.")

  topic = (raw.topic or "").strip()
  if not topic:
    raise ValueError("Generated quiz is missing required topic.")
  name = resolve_name(raw.name, subject, topic)

  if contains_batch_marker(name) or contains_batch_marker(topic):
    raise ValueError(f"{label} generated metadata with numbering markers in name/topic.")

  if quiz_type == "true-false":
    validate_true_false_balance(items, label=label)

  return NormalizedQuiz(quiz_type=quiz_type, name=name, subject=subject, topic=topic, items=items, total_time_limit=total_time_limit)
