"""Base interfaces for JSON-mode AI providers."""

from __future__ import annotations

import asyncio
import json
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Any, Literal, TypeVar

from app.ai.json_parser import parse_json_object
from app.jobs.models import TokenUsage

ProviderName = Literal["openai", "anthropic", "gemini"]
T = TypeVar("T")


@dataclass(frozen=True)
class LLMCallMetrics:
  provider: str
  model: str
  llm_latency_ms: int
  usage: TokenUsage
  request_id: str | None = None


@dataclass(frozen=True)
class LLMJsonResult:
  parsed: dict[str, Any]
  raw_text: str
  metrics: LLMCallMetrics


class LLMGenerationError(RuntimeError):
  """Provider call failed; carries whatever metrics were observed."""

  def __init__(self, message: str, *, metrics: LLMCallMetrics | None = None, raw_text: str | None = None) -> None:
    super().__init__(message)
    self.metrics = metrics
    self.raw_text = raw_text


def build_usage(input_tokens: Any, output_tokens: Any, total_tokens: Any = None) -> TokenUsage:
  """Coerce provider usage counters, deriving the total when absent."""

  def _non_negative(value: Any) -> int:
    try:
      number = int(value or 0)
    except (TypeError, ValueError):
      return 0
    return max(0, number)

  inputs = _non_negative(input_tokens)
  outputs = _non_negative(output_tokens)
  explicit_total = _non_negative(total_tokens)
  return TokenUsage(input_tokens=inputs, output_tokens=outputs, total_tokens=explicit_total or inputs + outputs)


class AIModel(ABC):
  """Abstract JSON-mode model client."""

  provider: ProviderName
  name: str
  timeout_seconds: float = 120.0

  @abstractmethod
  async def generate_json(self, *, system_prompt: str, user_prompt: str) -> LLMJsonResult:
    """Generate a JSON object for the given prompts."""

  def _metrics(self, started: float, usage: TokenUsage | None = None, request_id: str | None = None) -> LLMCallMetrics:
    latency_ms = int((time.perf_counter() - started) * 1000)
    return LLMCallMetrics(provider=self.provider, model=self.name, llm_latency_ms=latency_ms, usage=usage or TokenUsage(), request_id=request_id)

  async def _with_timeout(self, call: Awaitable[T], started: float) -> T:
    """Bound an SDK call so a hung provider counts as a failed attempt."""
    try:
      return await asyncio.wait_for(call, timeout=self.timeout_seconds)
    except TimeoutError as exc:
      raise LLMGenerationError(f"{self.provider} call timed out after {self.timeout_seconds:.0f}s", metrics=self._metrics(started)) from exc

  def _parse(self, content: str, metrics: LLMCallMetrics) -> LLMJsonResult:
    if not content.strip():
      raise LLMGenerationError(f"{self.provider} returned empty content", metrics=metrics)
    try:
      parsed = parse_json_object(content)
    except (json.JSONDecodeError, ValueError) as exc:
      raise LLMGenerationError(f"{self.provider} returned non-JSON content", metrics=metrics, raw_text=content) from exc
    return LLMJsonResult(parsed=parsed, raw_text=content, metrics=metrics)
