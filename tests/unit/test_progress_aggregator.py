from __future__ import annotations

import asyncio
from dataclasses import replace

import pytest

from app.jobs.models import ItemProgress, JobProgress
from app.jobs.progress import ProgressAggregator


class SlowSink:
  """Persist double that tracks overlapping writes."""

  def __init__(self, delay: float = 0.0, *, fail: bool = False) -> None:
    self.delay = delay
    self.fail = fail
    self.writes: list[JobProgress] = []
    self.in_flight = 0
    self.max_in_flight = 0

  async def __call__(self, progress: JobProgress) -> None:
    self.in_flight += 1
    self.max_in_flight = max(self.max_in_flight, self.in_flight)
    try:
      await asyncio.sleep(self.delay)
      if self.fail:
        raise RuntimeError("database unavailable")
      self.writes.append(progress)
    finally:
      self.in_flight -= 1


def _items(count: int) -> list[ItemProgress]:
  return [ItemProgress(temp_id=f"temp-{n}", item_number=n) for n in range(1, count + 1)]


@pytest.mark.anyio
async def test_burst_of_updates_is_coalesced_into_few_writes() -> None:
  sink = SlowSink()
  aggregator = ProgressAggregator(job_id="job-1", total=10, items=_items(10), persist=sink, debounce_seconds=0.05)

  for n in range(1, 11):
    aggregator.update(replace(aggregator.get(f"temp-{n}"), status="generating"))
  for n in range(1, 11):
    aggregator.update(replace(aggregator.get(f"temp-{n}"), status="completed"))

  final = await aggregator.flush_final()

  # Twenty updates inside one debounce window produce only the final write.
  assert len(sink.writes) == 1
  assert final.current == 10
  assert all(item.status == "completed" for item in sink.writes[-1].items)


@pytest.mark.anyio
async def test_at_most_one_write_in_flight() -> None:
  sink = SlowSink(delay=0.02)
  aggregator = ProgressAggregator(job_id="job-1", total=4, items=_items(4), persist=sink, debounce_seconds=0.001)

  for n in range(1, 5):
    aggregator.update(replace(aggregator.get(f"temp-{n}"), status="generating"))
    await asyncio.sleep(0.005)
    aggregator.update(replace(aggregator.get(f"temp-{n}"), status="completed"))
    await asyncio.sleep(0.005)

  await aggregator.flush_final()

  assert sink.max_in_flight == 1
  assert len(sink.writes) >= 2


@pytest.mark.anyio
async def test_flush_final_writes_terminal_state_last() -> None:
  sink = SlowSink(delay=0.01)
  aggregator = ProgressAggregator(job_id="job-1", total=2, items=_items(2), persist=sink, debounce_seconds=0.001)

  aggregator.update(replace(aggregator.get("temp-1"), status="generating"))
  await asyncio.sleep(0.005)
  aggregator.update(replace(aggregator.get("temp-1"), status="completed"))
  aggregator.update(replace(aggregator.get("temp-2"), status="failed", error="boom"))

  await aggregator.flush_final()

  last = sink.writes[-1]
  assert last.current == 2
  assert [item.status for item in last.items] == ["completed", "failed"]
  assert last.items[1].error == "boom"


@pytest.mark.anyio
async def test_current_is_recomputed_from_terminal_items() -> None:
  sink = SlowSink()
  aggregator = ProgressAggregator(job_id="job-1", total=3, items=_items(3), persist=sink, debounce_seconds=10)

  aggregator.update(replace(aggregator.get("temp-2"), status="failed"))
  aggregator.update(replace(aggregator.get("temp-3"), status="generating"))
  assert aggregator.current == 1

  # Re-applying the same terminal item does not double count.
  aggregator.update(replace(aggregator.get("temp-2"), status="failed", retry_count=2))
  snapshot = aggregator.snapshot()
  assert snapshot.current == 1
  assert snapshot.total == 3
  assert [item.item_number for item in snapshot.items] == [1, 2, 3]
  await aggregator.flush_final()


@pytest.mark.anyio
async def test_intermediate_write_failure_is_not_fatal_but_final_write_raises() -> None:
  sink = SlowSink(fail=True)
  aggregator = ProgressAggregator(job_id="job-1", total=1, items=_items(1), persist=sink, debounce_seconds=0.001)

  aggregator.update(replace(aggregator.get("temp-1"), status="generating"))
  await asyncio.sleep(0.02)

  with pytest.raises(RuntimeError):
    await aggregator.flush_final()
