"""OpenAI provider implementation using the openai SDK in JSON mode."""

from __future__ import annotations

import logging
import time

from openai import AsyncOpenAI, OpenAIError

from app.ai.providers.base import AIModel, LLMGenerationError, LLMJsonResult, build_usage

logger = logging.getLogger(__name__)


class OpenAIModel(AIModel):
  """OpenAI chat completions client constrained to JSON objects."""

  provider = "openai"

  def __init__(self, name: str, api_key: str, *, timeout_seconds: float = 120.0) -> None:
    self.name = name
    self.timeout_seconds = timeout_seconds
    # Retries are owned by the generation engine, not the SDK.
    self._client = AsyncOpenAI(api_key=api_key, timeout=timeout_seconds, max_retries=0)

  async def generate_json(self, *, system_prompt: str, user_prompt: str) -> LLMJsonResult:
    started = time.perf_counter()
    try:
      response = await self._with_timeout(
        self._client.chat.completions.create(model=self.name, messages=[{"role": "system", "content": system_prompt}, {"role": "user", "content": user_prompt}], response_format={"type": "json_object"}),
        started,
      )
    except OpenAIError as exc:
      raise LLMGenerationError(f"OpenAI error: {exc}", metrics=self._metrics(started)) from exc

    usage = None
    if response.usage:
      usage = build_usage(response.usage.prompt_tokens, response.usage.completion_tokens, response.usage.total_tokens)
    metrics = self._metrics(started, usage, getattr(response, "_request_id", None))

    content = (response.choices[0].message.content if response.choices else None) or ""
    logger.debug("OpenAI response for %s: %d chars in %dms", self.name, len(content), metrics.llm_latency_ms)
    return self._parse(content, metrics)
