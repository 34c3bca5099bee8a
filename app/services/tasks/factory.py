from __future__ import annotations

from app.config import Settings
from app.services.tasks.interface import TaskEnqueuer
from app.services.tasks.local import InProcessEnqueuer, LocalHttpEnqueuer


def get_task_enqueuer(settings: Settings) -> TaskEnqueuer:
  """Factory to get the configured task enqueuer."""
  if settings.task_service_provider == "http":
    return LocalHttpEnqueuer(settings)
  return InProcessEnqueuer(settings)
