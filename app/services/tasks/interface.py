from __future__ import annotations

from typing import Protocol


class TaskEnqueuer(Protocol):
  """Interface for handing generation jobs to a background runner."""

  async def enqueue(self, job_id: str, payload: dict) -> None:
    """Schedule a job for processing and return without waiting for it."""
    ...
