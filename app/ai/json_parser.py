"""Lenient JSON parsing helpers for LLM outputs."""

from __future__ import annotations

import json
import re
from typing import Any

_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_FENCE_OPEN_RE = re.compile(r"^```[a-zA-Z]*\n?")
_FENCE_CLOSE_RE = re.compile(r"```$")


def strip_json_fences(text: str) -> str:
  """Remove a surrounding markdown code fence, if any."""
  trimmed = (text or "").strip()
  if not trimmed.startswith("```"):
    return trimmed
  return _FENCE_CLOSE_RE.sub("", _FENCE_OPEN_RE.sub("", trimmed)).strip()


def parse_json_object(raw: str) -> dict[str, Any]:
  """Parse a JSON object from model output, tolerating surrounding prose.

  Raises json.JSONDecodeError when no object can be recovered, and ValueError
  when the payload parses but is not an object.
  """
  cleaned = strip_json_fences(raw)
  last_error: json.JSONDecodeError | None = None

  # Prefer strict parsing so valid JSON is preserved without mutation.
  try:
    return _require_object(json.loads(cleaned))
  except json.JSONDecodeError as exc:
    last_error = exc

  # Take the outermost braces to drop leading or trailing text.
  first = cleaned.find("{")
  last = cleaned.rfind("}")
  if first < 0 or last <= first:
    raise last_error

  candidate = cleaned[first : last + 1]
  try:
    return _require_object(json.loads(candidate))
  except json.JSONDecodeError as exc:
    last_error = exc

  # Strip trailing commas that commonly appear in LLM output.
  try:
    return _require_object(json.loads(_TRAILING_COMMA_RE.sub(r"\1", candidate)))
  except json.JSONDecodeError:
    raise last_error from None


def _require_object(value: Any) -> dict[str, Any]:
  if not isinstance(value, dict):
    raise ValueError("Model response JSON is not an object")
  return value
