from __future__ import annotations

import pytest
from conftest import build_settings

from app.ai.model_catalog import MODEL_CATALOG, available_models, build_model_client, resolve_selected_model


def test_only_models_with_configured_keys_are_available() -> None:
  settings = build_settings(openai_api_key=None, anthropic_api_key="sk-ant", gemini_api_key="g-key")

  assert [model.provider for model in available_models(settings)] == ["anthropic", "gemini"]


def test_unset_model_id_defaults_to_first_available() -> None:
  settings = build_settings(openai_api_key=None, gemini_api_key="g-key")

  assert resolve_selected_model(settings, None).id == "google-gemini-2-5-flash"


def test_unknown_or_unconfigured_model_does_not_resolve() -> None:
  settings = build_settings()

  assert resolve_selected_model(settings, "openai-gpt-5-mini").model == "gpt-5-mini"
  assert resolve_selected_model(settings, "anthropic-claude-haiku-3-5") is None
  assert resolve_selected_model(settings, "no-such-model") is None
  assert resolve_selected_model(build_settings(openai_api_key=None), None) is None


def test_catalog_ids_are_unique() -> None:
  ids = [model.id for model in MODEL_CATALOG]
  assert len(ids) == len(set(ids))


def test_client_requires_provider_key() -> None:
  descriptor = next(model for model in MODEL_CATALOG if model.provider == "anthropic")

  with pytest.raises(ValueError, match="No API key"):
    build_model_client(build_settings(), descriptor)
