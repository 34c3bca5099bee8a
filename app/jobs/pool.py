"""Bounded-concurrency worker pool that preserves item order."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from typing import TypeVar

from app.jobs.retry import SleepFn

T = TypeVar("T")
logger = logging.getLogger(__name__)


class WorkerPool:
  """Run `task(i)` for i in [0, count) with at most `limit` tasks in flight.

  Scheduling is poll-based: each round tops the in-flight set up to the limit,
  then sleeps `poll_interval` seconds. Results land in their original index
  slot; a task that raises leaves `None` in its slot.
  """

  def __init__(self, *, limit: int = 10, poll_interval: float = 0.1, sleep: SleepFn = asyncio.sleep) -> None:
    if limit < 1:
      raise ValueError("Worker pool limit must be at least 1.")
    self._limit = limit
    self._poll_interval = poll_interval
    self._sleep = sleep

  async def run(self, count: int, task: Callable[[int], Awaitable[T]]) -> list[T | None]:
    results: list[T | None] = [None] * count
    queue: deque[int] = deque(range(count))
    in_flight: set[asyncio.Task[None]] = set()

    async def _run_slot(index: int) -> None:
      try:
        results[index] = await task(index)
      except Exception:  # noqa: BLE001
        logger.error("Worker task for item %d failed", index + 1, exc_info=True)
        results[index] = None

    try:
      while queue or in_flight:
        while len(in_flight) < self._limit and queue:
          index = queue.popleft()
          handle = asyncio.create_task(_run_slot(index))
          in_flight.add(handle)
          handle.add_done_callback(in_flight.discard)

        if in_flight:
          await self._sleep(self._poll_interval)
    finally:
      # Whole-job cancellation tears down in-flight work.
      pending = list(in_flight)
      for handle in pending:
        handle.cancel()
      if pending:
        await asyncio.gather(*pending, return_exceptions=True)

    return results
