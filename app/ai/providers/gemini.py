"""Gemini provider implementation using the google-genai SDK."""

from __future__ import annotations

import logging
import time

from google import genai
from google.genai import errors, types

from app.ai.providers.base import AIModel, LLMGenerationError, LLMJsonResult, build_usage

logger = logging.getLogger(__name__)


class GeminiModel(AIModel):
  """Gemini client using JSON response mime type."""

  provider = "gemini"

  def __init__(self, name: str, api_key: str, *, timeout_seconds: float = 120.0) -> None:
    self.name = name
    self.timeout_seconds = timeout_seconds
    # The SDK expects the HTTP timeout in milliseconds.
    self._client = genai.Client(api_key=api_key, http_options=types.HttpOptions(timeout=int(timeout_seconds * 1000)))

  async def generate_json(self, *, system_prompt: str, user_prompt: str) -> LLMJsonResult:
    started = time.perf_counter()
    config = types.GenerateContentConfig(system_instruction=system_prompt, response_mime_type="application/json")
    try:
      # Use the async client to avoid blocking the asyncio event loop.
      response = await self._with_timeout(self._client.aio.models.generate_content(model=self.name, contents=user_prompt, config=config), started)
    except errors.APIError as exc:
      raise LLMGenerationError(f"Gemini error {exc.code}: {exc.message}", metrics=self._metrics(started)) from exc

    usage = None
    if response.usage_metadata:
      usage = build_usage(response.usage_metadata.prompt_token_count, response.usage_metadata.candidates_token_count, response.usage_metadata.total_token_count)
    metrics = self._metrics(started, usage)

    content = (response.text or "").strip()
    logger.debug("Gemini response for %s: %d chars in %dms", self.name, len(content), metrics.llm_latency_ms)
    return self._parse(content, metrics)
