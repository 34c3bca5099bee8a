"""Provider implementations."""

from app.ai.providers.base import AIModel, LLMCallMetrics, LLMGenerationError, LLMJsonResult

__all__ = ["AIModel", "LLMCallMetrics", "LLMGenerationError", "LLMJsonResult"]
