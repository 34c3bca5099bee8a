"""Reference document reading and cleanup of uploaded files."""

from __future__ import annotations

import logging
import os
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol

from starlette.concurrency import run_in_threadpool

from app.jobs.context import ParsedDocument
from app.jobs.errors import OrchestrationError
from app.jobs.models import DocumentReference

logger = logging.getLogger(__name__)

_TEXT_EXTENSIONS = {".txt", ".md", ".text"}


class DocumentReader(Protocol):
  """Extract plain text from an uploaded document."""

  async def read(self, document: DocumentReference) -> str: ...


def _is_plain_text(document: DocumentReference) -> bool:
  return "text/plain" in (document.mimetype or "") or Path(document.storage_path).suffix.lower() in _TEXT_EXTENSIONS


class PlainTextDocumentReader:
  """Reads plain-text uploads; other formats need a dedicated reader."""

  async def read(self, document: DocumentReference) -> str:
    if not _is_plain_text(document):
      raise OrchestrationError(f"Unsupported file type: {document.mimetype or Path(document.storage_path).suffix}")

    path = Path(document.storage_path)
    try:
      # File IO runs off the event loop.
      return await run_in_threadpool(path.read_text, encoding="utf-8", errors="replace")
    except OSError as exc:
      raise OrchestrationError(f"Failed to read document '{document.original_name}': {exc}") from exc


async def read_documents(reader: DocumentReader, documents: Sequence[DocumentReference]) -> list[ParsedDocument]:
  """Read every document in order; any failure aborts the job."""
  parsed: list[ParsedDocument] = []
  for document in documents:
    text = await reader.read(document)
    parsed.append(ParsedDocument(original_name=document.original_name, document_type=document.document_type, text=text))
  return parsed


def unlink_documents(documents: Sequence[DocumentReference]) -> int:
  """Delete uploaded files, logging and skipping failures. Returns the count removed."""
  removed = 0
  for document in documents:
    try:
      os.unlink(document.storage_path)
      removed += 1
    except FileNotFoundError:
      logger.info("Uploaded file already removed: %s", document.storage_path)
    except OSError as exc:
      logger.warning("Failed to delete uploaded file %s: %s", document.storage_path, exc)
  return removed
