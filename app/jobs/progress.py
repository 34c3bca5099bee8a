"""Job progress aggregation with debounced, serialized persistence."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable

from app.jobs.models import TERMINAL_ITEM_STATUSES, ItemProgress, JobProgress

logger = logging.getLogger(__name__)

PersistFn = Callable[[JobProgress], Awaitable[None]]


class ProgressAggregator:
  """Merge per-item status into job progress and coalesce repository writes.

  Every update resets a debounce timer. When the timer fires, a write is
  chained after the previous one, so at most one write per job is in flight.
  """

  def __init__(self, *, job_id: str, total: int, items: Iterable[ItemProgress], persist: PersistFn, debounce_seconds: float = 0.5) -> None:
    self._job_id = job_id
    self._total = total
    self._items: dict[str, ItemProgress] = {item.temp_id: item for item in items}
    self._persist = persist
    self._debounce_seconds = debounce_seconds
    self._timer: asyncio.TimerHandle | None = None
    self._last_write: asyncio.Task[None] | None = None

  @property
  def current(self) -> int:
    return sum(1 for item in self._items.values() if item.status in TERMINAL_ITEM_STATUSES)

  def get(self, temp_id: str) -> ItemProgress:
    return self._items[temp_id]

  def snapshot(self) -> JobProgress:
    items = sorted(self._items.values(), key=lambda item: item.item_number)
    return JobProgress(current=self.current, total=self._total, items=items)

  def update(self, item: ItemProgress) -> None:
    """Merge one item by temp id (last write wins) and schedule a write."""
    self._items[item.temp_id] = item
    if self._timer is not None:
      self._timer.cancel()
    loop = asyncio.get_running_loop()
    self._timer = loop.call_later(self._debounce_seconds, self._fire)

  def _fire(self) -> None:
    self._timer = None
    previous = self._last_write
    self._last_write = asyncio.create_task(self._write_after(previous))

  async def _write_after(self, previous: asyncio.Task[None] | None) -> None:
    if previous is not None:
      await previous
    try:
      await self._persist(self.snapshot())
    except Exception:  # noqa: BLE001
      logger.warning("Intermediate progress write failed for job %s", self._job_id, exc_info=True)

  async def flush_final(self) -> JobProgress:
    """Cancel the pending timer, drain the write chain, then write unconditionally."""
    if self._timer is not None:
      self._timer.cancel()
      self._timer = None
    if self._last_write is not None:
      await self._last_write
    snapshot = self.snapshot()
    await self._persist(snapshot)
    return snapshot
