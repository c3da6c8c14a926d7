"""
Debug-record janitor tests.
"""

import asyncio

import pytest

from progressgate.db.repositories import ProgressRepository
from progressgate.observability.metrics import metrics
from progressgate.progress.janitor import DebugRecordJanitor


async def _seed(session_factory, labels, task_id="task-1"):
    async with session_factory() as session:
        repo = ProgressRepository(session)
        for i, label in enumerate(labels):
            await repo.create(task_id=task_id, label=label, record_id=f"{task_id}-{i}")
        await session.commit()


async def _labels(session_factory, task_id="task-1"):
    async with session_factory() as session:
        return sorted(r.label for r in await ProgressRepository(session).list_for_task(task_id))


class _RefreshCounter:
    def __init__(self):
        self.calls = 0

    async def __call__(self):
        self.calls += 1


@pytest.mark.asyncio
async def test_sweep_without_pollution_does_not_refresh(session_factory):
    await _seed(session_factory, ["Planning", "Searching"])
    refresh = _RefreshCounter()
    janitor = DebugRecordJanitor("task-1", on_deleted=refresh, session_factory=session_factory)

    assert await janitor.run_once() is False
    assert refresh.calls == 0
    assert await _labels(session_factory) == ["Planning", "Searching"]


@pytest.mark.asyncio
async def test_sweep_deletes_pollution_and_refreshes_once(session_factory):
    await _seed(session_factory, ["Planning", "Debug Topic 1", "debug topic 2", "Searching"])
    await _seed(session_factory, ["Debug Topic elsewhere"], task_id="task-2")
    refresh = _RefreshCounter()
    janitor = DebugRecordJanitor("task-1", on_deleted=refresh, session_factory=session_factory)

    assert await janitor.run_once() is True
    assert refresh.calls == 1
    assert await _labels(session_factory) == ["Planning", "Searching"]
    assert await _labels(session_factory, "task-2") == ["Debug Topic elsewhere"]
    assert metrics.counter("janitor.records.deleted") == 2

    # Nothing left to clean
    assert await janitor.run_once() is False
    assert refresh.calls == 1


@pytest.mark.asyncio
async def test_marker_wildcards_are_literal(session_factory):
    await _seed(session_factory, ["100% done", "progress_50"])
    janitor = DebugRecordJanitor("task-1", session_factory=session_factory, marker="0%")

    assert await janitor.run_once() is True
    assert await _labels(session_factory) == ["progress_50"]


@pytest.mark.asyncio
async def test_sweep_failure_is_swallowed():
    class BrokenJanitor(DebugRecordJanitor):
        async def sweep(self):
            raise ConnectionError("store unreachable")

    refresh = _RefreshCounter()
    janitor = BrokenJanitor("task-1", on_deleted=refresh)

    assert await janitor.run_once() is False
    assert refresh.calls == 0
    assert metrics.counter("janitor.sweeps.failed") == 1


@pytest.mark.asyncio
async def test_refresh_failure_is_swallowed(session_factory):
    await _seed(session_factory, ["Debug Topic"])

    async def failing_refresh():
        raise RuntimeError("snapshot failed")

    janitor = DebugRecordJanitor("task-1", on_deleted=failing_refresh, session_factory=session_factory)

    assert await janitor.run_once() is True


@pytest.mark.asyncio
async def test_overlapping_sweeps_are_skipped():
    release = asyncio.Event()

    class SlowJanitor(DebugRecordJanitor):
        sweeps = 0

        async def sweep(self):
            SlowJanitor.sweeps += 1
            await release.wait()
            return False

    janitor = SlowJanitor("task-1")
    first = asyncio.create_task(janitor.run_once())
    await asyncio.sleep(0)

    assert await janitor.run_once() is False
    release.set()
    await first

    assert SlowJanitor.sweeps == 1
    assert metrics.counter("janitor.sweeps.skipped") == 1


@pytest.mark.asyncio
async def test_periodic_loop_runs_and_stops(session_factory):
    await _seed(session_factory, ["Debug Topic"])
    refresh = _RefreshCounter()
    janitor = DebugRecordJanitor(
        "task-1",
        on_deleted=refresh,
        interval=0.01,
        session_factory=session_factory,
    )

    janitor.start()
    assert janitor.running is True
    for _ in range(100):
        if refresh.calls:
            break
        await asyncio.sleep(0.01)
    await janitor.stop()

    assert janitor.running is False
    assert refresh.calls == 1
    assert await _labels(session_factory) == []


@pytest.mark.asyncio
async def test_stop_before_start_is_noop():
    janitor = DebugRecordJanitor("task-1")
    await janitor.stop()
    assert janitor.running is False
