"""Catalog of selectable generation models and their provider wiring."""

from __future__ import annotations

from dataclasses import dataclass

from app.ai.providers.base import AIModel, ProviderName
from app.config import Settings


@dataclass(frozen=True)
class ModelDescriptor:
  id: str
  provider: ProviderName
  model: str
  label: str
  description: str


MODEL_CATALOG: tuple[ModelDescriptor, ...] = (
  ModelDescriptor(
    id="openai-gpt-5-mini",
    provider="openai",
    model="gpt-5-mini",
    label="OpenAI GPT-5 mini",
    description="Fast, cost-efficient baseline for structured quiz generation with strong instruction-following.",
  ),
  ModelDescriptor(
    id="anthropic-claude-haiku-3-5",
    provider="anthropic",
    model="claude-haiku-4-5-20251001",
    label="Claude Haiku 4.5",
    description="Low-latency, lower-cost Claude option for faster generation while keeping good quality.",
  ),
  ModelDescriptor(
    id="google-gemini-2-5-flash",
    provider="gemini",
    model="gemini-2.5-flash",
    label="Google Gemini 2.5 Flash",
    description="Fast, price-performance Gemini model for high-throughput generation and iteration.",
  ),
)


def provider_api_key(settings: Settings, provider: str) -> str | None:
  """Return the configured API key for a provider, if any."""
  if provider == "openai":
    return settings.openai_api_key
  if provider == "anthropic":
    return settings.anthropic_api_key
  if provider == "gemini":
    return settings.gemini_api_key
  return None


def available_models(settings: Settings) -> list[ModelDescriptor]:
  """List catalog entries whose provider has a key configured."""
  return [model for model in MODEL_CATALOG if provider_api_key(settings, model.provider)]


def resolve_selected_model(settings: Settings, model_id: str | None) -> ModelDescriptor | None:
  """Resolve a model id against available models; first available wins when unset."""
  available = available_models(settings)
  if not available:
    return None
  if not model_id:
    return available[0]
  return next((model for model in available if model.id == model_id), None)


def build_model_client(settings: Settings, descriptor: ModelDescriptor) -> AIModel:
  """Instantiate the SDK-backed client for a catalog entry."""
  api_key = provider_api_key(settings, descriptor.provider)
  if not api_key:
    raise ValueError(f"No API key configured for provider '{descriptor.provider}'.")

  # Import lazily so only the selected provider SDK is loaded.
  if descriptor.provider == "openai":
    from app.ai.providers.openai_provider import OpenAIModel

    return OpenAIModel(descriptor.model, api_key, timeout_seconds=settings.provider_timeout_seconds)
  if descriptor.provider == "anthropic":
    from app.ai.providers.anthropic_provider import AnthropicModel

    return AnthropicModel(descriptor.model, api_key, timeout_seconds=settings.provider_timeout_seconds)
  if descriptor.provider == "gemini":
    from app.ai.providers.gemini import GeminiModel

    return GeminiModel(descriptor.model, api_key, timeout_seconds=settings.provider_timeout_seconds)

  raise ValueError(f"Unknown provider '{descriptor.provider}'.")
