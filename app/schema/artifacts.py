"""Raw LLM quiz payload shapes, one per quiz type.

Model output is converted into these structs before normalization. Unknown item
tags or wrong value types raise `msgspec.ValidationError`, which the engine
treats as a failed attempt.
"""

from __future__ import annotations

from typing import Any

import msgspec

Scalar = str | int | float


class RawOption(msgspec.Struct, rename="camel"):
  text: Scalar
  correct: Any = None
  id: Scalar | None = None


class RawOpenAnswer(msgspec.Struct, rename="camel"):
  answer_type: str | None = None
  text: Scalar | None = None
  id: Scalar | None = None
  case_sensitive: bool = False
  keywords: list[Any] | None = None
  min_keywords: float | None = None
  list_items: list[Any] | None = None
  min_correct_items: float | None = None
  require_order: bool | None = None


class RawMcItem(msgspec.Struct, tag_field="type", tag="mc", rename="camel"):
  text: str
  options: list[RawOption]
  id: Scalar | None = None
  time_limit: float | None = None
  image: str | None = None


class RawOpenItem(msgspec.Struct, tag_field="type", tag="open", rename="camel"):
  text: str
  answers: list[RawOpenAnswer]
  id: Scalar | None = None
  time_limit: float | None = None
  image: str | None = None


class RawTrueFalseItem(msgspec.Struct, rename="camel"):
  """True/false statements arrive in several shapes; correctness is inferred later."""

  id: Scalar | None = None
  text: str | None = None
  question: str | None = None
  statement: str | None = None
  prompt: str | None = None
  title: str | None = None
  correct_answer: Any = None
  answer: Any = None
  correct: Any = None
  is_true: Any = None
  is_correct_true: Any = None
  label: Any = None
  options: list[RawOption] | None = None
  time_limit: float | None = None
  image: str | None = None


class RawCrosswordEntry(msgspec.Struct, rename="camel"):
  answer: Scalar
  clue: str = ""
  id: Scalar | None = None


class RawQuizBase(msgspec.Struct, rename="camel"):
  name: str | None = None
  topic: str | None = None
  total_time_limit: float | None = None


class RawBasicQuiz(RawQuizBase):
  items: list[RawMcItem | RawOpenItem] = msgspec.field(default_factory=list)


class RawRapidQuiz(RawQuizBase):
  items: list[RawMcItem] = msgspec.field(default_factory=list)


class RawTrueFalseQuiz(RawQuizBase):
  items: list[RawTrueFalseItem] = msgspec.field(default_factory=list)


class RawCrosswordQuiz(RawQuizBase):
  entries: list[RawCrosswordEntry] = msgspec.field(default_factory=list)
  items: list[RawCrosswordEntry] = msgspec.field(default_factory=list)


RawQuiz = RawBasicQuiz | RawRapidQuiz | RawTrueFalseQuiz | RawCrosswordQuiz

RAW_QUIZ_MODELS: dict[str, type[RawQuizBase]] = {"basic": RawBasicQuiz, "rapid": RawRapidQuiz, "true-false": RawTrueFalseQuiz, "crossword": RawCrosswordQuiz}


def decode_raw_quiz(payload: dict[str, Any], quiz_type: str) -> RawQuiz:
  """Convert a parsed JSON object into the raw struct for `quiz_type`."""
  model = RAW_QUIZ_MODELS.get(quiz_type)
  if model is None:
    raise ValueError(f"Unsupported quiz type '{quiz_type}'.")
  # Non-strict mode tolerates numeric strings and similar LLM drift.
  return msgspec.convert(payload, type=model, strict=False)
