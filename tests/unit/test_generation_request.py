from __future__ import annotations

import pytest
from pydantic import ValidationError

from app.api.models import GenerationJobRequest


def _request(**overrides) -> GenerationJobRequest:
  payload = {"instructions": "  Focus on fractions.  ", "subject": "Mathematics"}
  payload.update(overrides)
  return GenerationJobRequest.model_validate(payload)


def test_defaults_and_trimming() -> None:
  request = _request()

  assert request.instructions == "Focus on fractions."
  assert request.item_count == 10
  assert request.questions_per_quiz == 10
  assert request.quiz_types == ["basic"]
  assert request.documents == []


def test_quiz_types_are_deduplicated_in_order() -> None:
  assert _request(quiz_types=["rapid", "basic", "rapid"]).quiz_types == ["rapid", "basic"]


def test_unknown_document_type_becomes_other() -> None:
  document = {"document_type": "slides", "filename": "a.txt", "original_name": "a.txt", "size": 3, "storage_path": "/uploads/a.txt"}

  assert _request(documents=[document]).documents[0].document_type == "other"


@pytest.mark.parametrize(
  "overrides",
  [
    {"topic": "Fractions"},
    {"item_count": "3"},
    {"subject": ""},
    {"education_level": "secondary-1"},
    {"unexpected": True},
    {"documents": [{"filename": "a", "original_name": "a", "size": 1, "storage_path": "/u/a"}] * 6},
  ],
)
def test_invalid_requests(overrides: dict) -> None:
  with pytest.raises(ValidationError):
    _request(**overrides)
