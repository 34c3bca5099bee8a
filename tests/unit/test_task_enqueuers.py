from __future__ import annotations

import asyncio

import pytest
from conftest import build_settings

from app.services.tasks.factory import get_task_enqueuer
from app.services.tasks.local import InProcessEnqueuer, LocalHttpEnqueuer


def test_factory_selects_enqueuer_by_provider() -> None:
  assert isinstance(get_task_enqueuer(build_settings()), InProcessEnqueuer)
  assert isinstance(get_task_enqueuer(build_settings(task_service_provider="http", base_url="http://localhost:8080")), LocalHttpEnqueuer)


@pytest.mark.anyio
async def test_in_process_enqueue_returns_before_the_job_finishes() -> None:
  started = asyncio.Event()
  release = asyncio.Event()
  finished: list[str] = []

  async def _runner(job_id: str, settings) -> None:
    started.set()
    await release.wait()
    finished.append(job_id)

  await InProcessEnqueuer(build_settings(), runner=_runner).enqueue("job-1", {})
  await asyncio.wait_for(started.wait(), timeout=1)
  assert finished == []

  release.set()
  await asyncio.sleep(0.01)
  assert finished == ["job-1"]


@pytest.mark.anyio
async def test_http_enqueue_requires_base_url() -> None:
  with pytest.raises(RuntimeError, match="Base URL"):
    await LocalHttpEnqueuer(build_settings(task_service_provider="http")).enqueue("job-1", {})


def test_http_enqueue_routes_localhost_in_process() -> None:
  enqueuer = LocalHttpEnqueuer(build_settings(base_url="http://localhost:8080"))

  assert enqueuer._should_use_asgi_transport("http://127.0.0.1:8080")
  assert not enqueuer._should_use_asgi_transport("https://quizgen.example.com")
  assert enqueuer._task_headers() == {"authorization": "Bearer task-secret"}
