"""Per-item generation context allocation from instructions and reference documents."""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass

from app.jobs.models import DOCUMENT_TYPES, DocumentType

MAX_INSTRUCTIONS_CHARS = 1200
MAX_SYLLABUS_CHARS = 2200
MAX_CONTENT_CHUNK_CHARS = 2200
MAX_QUESTION_BANK_CHUNK_CHARS = 1700
MAX_OTHER_CHUNK_CHARS = 1000

# Word budgets per rotating chunk.
SUBJECT_CONTENT_WORDS = 260
QUESTION_BANK_WORDS = 220
OTHER_WORDS = 160

# Question banks only use question-boundary splitting when it yields enough units.
MIN_QUESTION_UNITS = 8

_WHITESPACE_RE = re.compile(r"\s+")
_QUESTION_BOUNDARY_RE = re.compile(r"(?=(?:\bquestion\s*\d+\b|\bq\s*\d+\b|\bq\d+\b|\d+\s*[\).]|[A-D]\s*[\).]))", re.IGNORECASE)
_SENTENCE_BOUNDARY_RE = re.compile(r"(?<=[.!?])\s+(?=[A-Z0-9])")

_DOCUMENT_LABELS: dict[str, str] = {
  "syllabus": "Syllabus",
  "question-bank": "Question Bank / Past Paper",
  "subject-content": "Subject Content",
  "other": "Other Reference",
}

_GUIDANCE_LINES = (
  "- Treat syllabus content as hard constraints for level and topic coverage.",
  "- Treat question-bank/past-paper content as style and difficulty exemplars.",
  "- Treat subject content as factual grounding.",
  "- Treat other documents as supplementary context.",
)


@dataclass(frozen=True)
class ParsedDocument:
  """Extracted document text with its category."""

  original_name: str
  document_type: str
  text: str


@dataclass(frozen=True)
class ContextAllocation:
  per_item_contexts: list[str]
  combined_extracted_text: str


def normalize_whitespace(text: str) -> str:
  return _WHITESPACE_RE.sub(" ", text or "").strip()


def truncate(text: str, max_chars: int) -> str:
  """Clip text to `max_chars`, marking the cut with an ellipsis."""
  if not text or len(text) <= max_chars:
    return text
  return f"{text[: max(0, max_chars - 3)].strip()}..."


def normalize_document_type(raw: str | None) -> DocumentType:
  if raw in DOCUMENT_TYPES:
    return raw  # type: ignore[return-value]
  return "other"


def split_into_units(text: str, document_type: str) -> list[str]:
  """Split text into question-like units for banks, else sentences."""
  normalized = normalize_whitespace(text)
  if not normalized:
    return []

  if document_type == "question-bank":
    question_units = [unit.strip() for unit in _QUESTION_BOUNDARY_RE.split(normalized) if unit.strip()]
    if len(question_units) >= MIN_QUESTION_UNITS:
      return question_units

  return [unit.strip() for unit in _SENTENCE_BOUNDARY_RE.split(normalized) if unit.strip()]


def build_rotating_chunks(texts: Sequence[str], document_type: str, item_count: int, words_per_chunk: int) -> list[str]:
  """Distribute units across items with a rotating start offset.

  Item i starts at `(i * step) % len(units)` where `step = max(1, len(units) // N)`
  and keeps taking units, wrapping around, until the word budget is met.
  """
  units = [unit for text in texts for unit in split_into_units(text, document_type)]
  if not units:
    return []

  step = max(1, len(units) // max(1, item_count))
  chunks: list[str] = []
  for index in range(item_count):
    cursor = (index * step) % len(units)
    picked: list[str] = []
    word_count = 0
    safety = 0
    while word_count < words_per_chunk and safety < len(units) * 2:
      unit = units[cursor]
      picked.append(unit)
      word_count += len(unit.split())
      cursor = (cursor + 1) % len(units)
      safety += 1
    chunks.append(normalize_whitespace(" ".join(picked)))
  return chunks


def _build_combined_text(documents: Sequence[ParsedDocument]) -> str:
  blocks = []
  for document in documents:
    label = _DOCUMENT_LABELS[normalize_document_type(document.document_type)]
    blocks.append(f"\n\n=== {document.original_name} [{label}] ===\n{normalize_whitespace(document.text)}")
  return "\n".join(blocks)


def _build_one_context(*, instructions: str, syllabus: str, subject_chunk: str, question_chunk: str, other_chunk: str, item_number: int, item_count: int) -> str:
  sections = ["Teacher Instructions:", truncate(normalize_whitespace(instructions), MAX_INSTRUCTIONS_CHARS), "", "Document Handling Guidance:", *_GUIDANCE_LINES, "", f"Batch Position: Quiz {item_number}/{item_count}"]

  # Syllabus text is repeated verbatim in every context.
  if syllabus:
    sections += ["", "Syllabus Constraints:", syllabus]
  if subject_chunk:
    sections += ["", "Subject Content Focus:", truncate(subject_chunk, MAX_CONTENT_CHUNK_CHARS)]
  if question_chunk:
    sections += ["", "Question Bank / Past Paper Exemplars:", truncate(question_chunk, MAX_QUESTION_BANK_CHUNK_CHARS)]
  if other_chunk:
    sections += ["", "Additional Reference Notes:", truncate(other_chunk, MAX_OTHER_CHUNK_CHARS)]

  return "\n".join(sections)


class ContextAllocator:
  """Split shared instructions and reference text into N bounded contexts."""

  def allocate(self, *, instructions: str, item_count: int, documents: Sequence[ParsedDocument] = ()) -> ContextAllocation:
    item_count = max(1, item_count)
    grouped: dict[str, list[str]] = {document_type: [] for document_type in DOCUMENT_TYPES}

    # Group non-empty document text by category.
    for document in documents:
      text = normalize_whitespace(document.text)
      if text:
        grouped[normalize_document_type(document.document_type)].append(text)

    syllabus = truncate(normalize_whitespace(" ".join(grouped["syllabus"])), MAX_SYLLABUS_CHARS)
    subject_chunks = build_rotating_chunks(grouped["subject-content"], "subject-content", item_count, SUBJECT_CONTENT_WORDS)
    question_chunks = build_rotating_chunks(grouped["question-bank"], "question-bank", item_count, QUESTION_BANK_WORDS)
    other_chunks = build_rotating_chunks(grouped["other"], "other", item_count, OTHER_WORDS)

    contexts = [
      _build_one_context(
        instructions=instructions,
        syllabus=syllabus,
        subject_chunk=subject_chunks[index] if subject_chunks else "",
        question_chunk=question_chunks[index] if question_chunks else "",
        other_chunk=other_chunks[index] if other_chunks else "",
        item_number=index + 1,
        item_count=item_count,
      )
      for index in range(item_count)
    ]
    return ContextAllocation(per_item_contexts=contexts, combined_extracted_text=_build_combined_text(documents))
