"""Error taxonomy for quiz generation jobs."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
  from app.ai.providers.base import LLMCallMetrics


class QuizGenerationError(Exception):
  """Base class for generation engine errors."""


class ValidationError(QuizGenerationError):
  """Submission is malformed or out of range; no job is created."""


class ProviderUnavailableError(QuizGenerationError):
  """No generation provider is configured for the requested model."""


class AttemptError(QuizGenerationError):
  """A single generation attempt failed and may be retried."""

  def __init__(self, message: str, *, metrics: LLMCallMetrics | None = None) -> None:
    super().__init__(message)
    self.metrics = metrics


class ItemExhaustedError(QuizGenerationError):
  """Every attempt for one item failed."""

  def __init__(self, item_number: int, attempts: int, last_error: str) -> None:
    super().__init__(f"Quiz {item_number} failed after {attempts} attempt(s): {last_error}")
    self.item_number = item_number
    self.attempts = attempts
    self.last_error = last_error


class OrchestrationError(QuizGenerationError):
  """Job-level failure that terminates the run as failed."""


class RulesUnavailableError(QuizGenerationError):
  """The rules provider could not be reached or returned an unusable payload."""


class QuizStoreError(QuizGenerationError):
  """The approval store rejected or failed a request."""
