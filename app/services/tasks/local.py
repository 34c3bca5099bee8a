from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from urllib.parse import urlparse

import httpx

from app.config import Settings
from app.services.tasks.interface import TaskEnqueuer

logger = logging.getLogger(__name__)

JobRunner = Callable[[str, Settings], Awaitable[object]]

# Strong references keep fire-and-forget tasks alive until they finish.
_BACKGROUND_TASKS: set[asyncio.Task[object]] = set()


def _default_runner() -> JobRunner:
  from app.services.jobs import process_job_sync

  return process_job_sync


class InProcessEnqueuer(TaskEnqueuer):
  """Runs jobs on the current event loop without waiting for them."""

  def __init__(self, settings: Settings, *, runner: JobRunner | None = None) -> None:
    self.settings = settings
    self._runner = runner

  async def enqueue(self, job_id: str, payload: dict) -> None:
    runner = self._runner or _default_runner()
    task = asyncio.create_task(runner(job_id, self.settings), name=f"generation-job-{job_id}")
    _BACKGROUND_TASKS.add(task)
    task.add_done_callback(_BACKGROUND_TASKS.discard)
    logger.info("Scheduled generation job %s in-process", job_id)


class LocalHttpEnqueuer(TaskEnqueuer):
  """Enqueues jobs by POSTing to the internal task endpoint."""

  def __init__(self, settings: Settings) -> None:
    self.settings = settings

  def _should_use_asgi_transport(self, base_url: str) -> bool:
    """Decide if we should route requests in-process via ASGITransport."""
    parsed = urlparse(base_url)
    hostname = (parsed.hostname or "").lower()
    return hostname in {"localhost", "127.0.0.1", "::1", "0.0.0.0"}

  def _build_client(self, base_url: str) -> httpx.AsyncClient:
    """Build an httpx client for task dispatch."""
    # Never trust environment proxy variables for internal task dispatch.
    if self._should_use_asgi_transport(base_url):
      from app.main import app

      transport = httpx.ASGITransport(app=app)
      return httpx.AsyncClient(transport=transport, base_url=base_url, trust_env=False)
    return httpx.AsyncClient(trust_env=False)

  def _task_headers(self) -> dict[str, str]:
    """Build task authentication headers for internal endpoints."""
    if not self.settings.task_secret:
      raise RuntimeError("Task secret not configured.")
    return {"authorization": f"Bearer {self.settings.task_secret}"}

  async def enqueue(self, job_id: str, payload: dict) -> None:
    """Enqueue a job by POSTing to the task endpoint."""
    if not self.settings.base_url:
      raise RuntimeError("Base URL not configured, strictly required for LocalHttpEnqueuer.")

    url = f"{self.settings.base_url.rstrip('/')}/internal/tasks/process-job"

    try:
      async with self._build_client(self.settings.base_url) as client:
        logger.info("Dispatching generation job %s to %s", job_id, url)
        response = await client.post(url, json={"job_id": job_id}, headers=self._task_headers(), timeout=30.0)
        response.raise_for_status()

    except httpx.HTTPStatusError as e:
      logger.error("Task dispatch returned %s for job %s: %s", e.response.status_code, job_id, e.response.text)
      raise
    except httpx.RequestError as e:
      logger.error("Failed to dispatch task for job %s: %s", job_id, e)
      raise
