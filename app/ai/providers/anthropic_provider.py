"""Anthropic provider implementation using the anthropic SDK."""

from __future__ import annotations

import logging
import time

from anthropic import AnthropicError, AsyncAnthropic

from app.ai.providers.base import AIModel, LLMGenerationError, LLMJsonResult, build_usage

logger = logging.getLogger(__name__)

_MAX_OUTPUT_TOKENS = 4096


class AnthropicModel(AIModel):
  """Claude messages client; JSON is enforced through the prompt."""

  provider = "anthropic"

  def __init__(self, name: str, api_key: str, *, timeout_seconds: float = 120.0) -> None:
    self.name = name
    self.timeout_seconds = timeout_seconds
    self._client = AsyncAnthropic(api_key=api_key, timeout=timeout_seconds, max_retries=0)

  async def generate_json(self, *, system_prompt: str, user_prompt: str) -> LLMJsonResult:
    started = time.perf_counter()
    try:
      response = await self._with_timeout(
        self._client.messages.create(model=self.name, max_tokens=_MAX_OUTPUT_TOKENS, system=system_prompt, messages=[{"role": "user", "content": f"{user_prompt}\n\nReturn ONLY a valid JSON object and no markdown."}]),
        started,
      )
    except AnthropicError as exc:
      raise LLMGenerationError(f"Anthropic error: {exc}", metrics=self._metrics(started)) from exc

    usage = build_usage(response.usage.input_tokens, response.usage.output_tokens) if response.usage else None
    metrics = self._metrics(started, usage, getattr(response, "_request_id", None))

    # Join text blocks; tool or thinking blocks are ignored.
    content = "\n".join(block.text for block in response.content if block.type == "text").strip()
    logger.debug("Anthropic response for %s: %d chars in %dms", self.name, len(content), metrics.llm_latency_ms)
    return self._parse(content, metrics)
