"""Tests for the batch dispatcher and worker pool."""

import asyncio

import pytest

from dex_migration.migration.dispatcher import BatchDispatcher
from dex_migration.migration.models import BATCH_PENDING, BATCH_PROCESSING
from dex_migration.migration.planner import plan_batches
from dex_migration.migration.workers import BatchWorkerPool


def _migration_with_batches(state, kinds_totals: dict[str, int], batch_size: int = 10) -> int:
    migration = state.create_migration("dispatch", list(kinds_totals), {}, batch_size)
    descriptors = [
        descriptor
        for kind, total in kinds_totals.items()
        for descriptor in plan_batches(kind, total, batch_size)
    ]
    state.set_total_items(migration.id, sum(kinds_totals.values()))
    state.create_batches(migration.id, descriptors)
    return migration.id


def test_fill_claims_window_in_dispatch_order(state):
    """The first K pending batches, ordered by kind then number, are claimed."""
    migration_id = _migration_with_batches(state, {"sessions": 20, "clients": 30})
    state.mark_migration_started(migration_id)
    queue: asyncio.Queue = asyncio.Queue()

    claimed = BatchDispatcher(state, queue, window=3).fill(migration_id)

    batches = {b.id: b for b in state.get_batches(migration_id)}
    assert [(batches[i].resource_kind, batches[i].batch_number) for i in claimed] == [
        ("clients", 1),
        ("clients", 2),
        ("clients", 3),
    ]
    assert all(batches[i].status == BATCH_PROCESSING for i in claimed)
    assert queue.qsize() == 3


def test_fill_skips_migration_not_in_progress(state):
    """A pending migration dispatches nothing."""
    migration_id = _migration_with_batches(state, {"clients": 30})
    queue: asyncio.Queue = asyncio.Queue()

    assert BatchDispatcher(state, queue, window=3).fill(migration_id) == []
    assert queue.empty()


def test_submit_next_claims_one(state):
    migration_id = _migration_with_batches(state, {"clients": 30})
    state.mark_migration_started(migration_id)
    dispatcher = BatchDispatcher(state, asyncio.Queue(), window=1)

    first = dispatcher.fill(migration_id)
    second = dispatcher.submit_next(migration_id)
    third = dispatcher.submit_next(migration_id)

    assert len({first[0], second, third}) == 3
    assert dispatcher.submit_next(migration_id) is None


def test_claim_is_exclusive(state):
    """A batch is only ever claimed once."""
    migration_id = _migration_with_batches(state, {"clients": 20})
    state.mark_migration_started(migration_id)

    first = state.claim_pending_batches(migration_id, 5)
    second = state.claim_pending_batches(migration_id, 5)

    assert len(first) == 2
    assert second == []
    assert state.get_batches(migration_id, status=BATCH_PENDING) == []


@pytest.mark.asyncio
async def test_worker_pool_drains_queue_and_follow_ups():
    """Items enqueued by the handler itself are processed before drain returns."""
    queue: asyncio.Queue = asyncio.Queue()
    seen: list[int] = []

    async def handler(item: int) -> None:
        seen.append(item)
        if item < 5:
            queue.put_nowait(item + 10)

    for item in range(1, 4):
        queue.put_nowait(item)

    await BatchWorkerPool(queue, handler, workers=2).drain()

    assert sorted(seen) == [1, 2, 3, 11, 12, 13]


@pytest.mark.asyncio
async def test_worker_pool_survives_handler_errors():
    """A raising handler does not stop the pool."""
    queue: asyncio.Queue = asyncio.Queue()
    seen: list[int] = []

    async def handler(item: int) -> None:
        if item == 2:
            raise RuntimeError("boom")
        seen.append(item)

    for item in (1, 2, 3):
        queue.put_nowait(item)

    await BatchWorkerPool(queue, handler, workers=1).drain()

    assert seen == [1, 3]


@pytest.mark.asyncio
async def test_worker_pool_bounds_concurrency():
    """No more than ``workers`` handlers run at once."""
    queue: asyncio.Queue = asyncio.Queue()
    running = 0
    peak = 0

    async def handler(item: int) -> None:
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.01)
        running -= 1

    for item in range(10):
        queue.put_nowait(item)

    await BatchWorkerPool(queue, handler, workers=3).drain()

    assert peak == 3
