"""Client for the quiz service internal endpoints: batch create and crossword grids."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from app.config import Settings
from app.jobs.errors import QuizStoreError

logger = logging.getLogger(__name__)

BATCH_CREATE_PATH = "/quiz/internal/batch-create"
CROSSWORD_PATH = "/quiz/internal/generate-crossword"
BATCH_CREATE_TIMEOUT_SECONDS = 60.0
CROSSWORD_TIMEOUT_SECONDS = 10.0
CROSSWORD_GRID_SIZE = 20


@dataclass(frozen=True)
class BatchCreateResult:
  quiz_ids: list[str]
  errors: list[Any] = field(default_factory=list)


@dataclass(frozen=True)
class CrosswordLayout:
  grid: list[list[Any]]
  entries: list[dict[str, Any]]


class QuizStoreClient:
  """Service-to-service calls authenticated with the shared quiz secret."""

  def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
    self._base_url = settings.quiz_service_url
    self._secret = settings.quiz_service_secret
    self._transport = transport

  def _client(self, timeout: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=self._transport, timeout=timeout, trust_env=False)

  async def create_quizzes_batch(self, quizzes: list[dict[str, Any]], owner_id: str) -> BatchCreateResult:
    """Persist approved drafts; the store reports per-quiz errors alongside created ids."""
    if not self._secret:
      raise QuizStoreError("QUIZ_WEBHOOK_SECRET or CLASS_SHARED_SECRET not configured")

    url = f"{self._base_url}{BATCH_CREATE_PATH}"
    try:
      async with self._client(BATCH_CREATE_TIMEOUT_SECONDS) as client:
        response = await client.post(url, json={"quizzes": quizzes, "userId": owner_id}, headers={"x-quiz-secret": self._secret})
        response.raise_for_status()
        body = response.json()
    except httpx.HTTPStatusError as exc:
      message = _error_message(exc.response) or "Failed to create quizzes"
      logger.error("Quiz batch create returned %s: %s", exc.response.status_code, message)
      raise QuizStoreError(message) from exc
    except (httpx.RequestError, ValueError) as exc:
      logger.error("Quiz batch create failed: %s", exc)
      raise QuizStoreError("Failed to create quizzes") from exc

    if not isinstance(body, dict):
      raise QuizStoreError("Quiz service returned a malformed batch create response.")
    return BatchCreateResult(quiz_ids=[str(quiz_id) for quiz_id in body.get("quizIds") or []], errors=list(body.get("errors") or []))

  async def generate_crossword(self, entries: list[dict[str, Any]]) -> CrosswordLayout:
    """Lay out crossword entries; on any failure the entries are returned unplaced."""
    url = f"{self._base_url}{CROSSWORD_PATH}"
    payload = {"words": [entry.get("answer") for entry in entries], "clues": [entry.get("clue") for entry in entries], "gridSize": CROSSWORD_GRID_SIZE}
    try:
      async with self._client(CROSSWORD_TIMEOUT_SECONDS) as client:
        response = await client.post(url, json=payload)
        response.raise_for_status()
        body = response.json()
      if not isinstance(body, dict) or not (body.get("ok") and body.get("grid") and body.get("entries")):
        raise ValueError("Invalid response from crossword generator")
    except (httpx.HTTPError, ValueError) as exc:
      logger.warning("Crossword grid generation failed, keeping unplaced entries: %s", exc)
      return CrosswordLayout(grid=[], entries=[_unplaced(entry) for entry in entries])

    placed = []
    for index, entry in enumerate(body["entries"]):
      original_id = entries[index].get("id") if index < len(entries) else None
      placed.append({"id": original_id or entry.get("id"), "answer": entry.get("answer"), "clue": entry.get("clue"), "positions": entry.get("positions") or [], "direction": entry.get("direction")})
    return CrosswordLayout(grid=body["grid"], entries=placed)


def _unplaced(entry: dict[str, Any]) -> dict[str, Any]:
  return {"id": entry.get("id"), "answer": entry.get("answer"), "clue": entry.get("clue"), "positions": [], "direction": None}


def _error_message(response: httpx.Response) -> str | None:
  try:
    body = response.json()
  except ValueError:
    return None
  return body.get("message") if isinstance(body, dict) else None
