"""Identifier utilities."""

from __future__ import annotations

import uuid


def generate_job_id() -> str:
  """Return a new job identifier."""
  return str(uuid.uuid4())


def generate_temp_id() -> str:
  """Return a temporary identifier for an unsaved quiz draft."""
  return str(uuid.uuid4())


def generate_item_id() -> str:
  """Return an identifier for a quiz item, option or answer."""
  return str(uuid.uuid4())
