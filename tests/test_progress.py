"""Tests for progress aggregation and the cascading failure policy."""

import asyncio

from dex_migration.migration.dispatcher import BatchDispatcher
from dex_migration.migration.models import (
    BATCH_PENDING,
    MIGRATION_COMPLETED,
    MIGRATION_FAILED,
    MIGRATION_IN_PROGRESS,
)
from dex_migration.migration.planner import plan_batches
from dex_migration.migration.progress import ProgressTracker


def _started(state, total: int, batch_size: int = 10) -> tuple[int, list[int]]:
    migration = state.create_migration("progress", ["clients"], {}, batch_size)
    state.set_total_items(migration.id, total)
    state.create_batches(migration.id, plan_batches("clients", total, batch_size))
    state.mark_migration_started(migration.id)
    return migration.id, [b.id for b in state.get_batches(migration.id)]


def _tracker(state, threshold: float = 0.5) -> ProgressTracker:
    return ProgressTracker(state, BatchDispatcher(state, asyncio.Queue(), 3), threshold)


def test_counters_recomputed_from_batches(state):
    """processed = stored(completed) + received(failed); failed = requested(failed)."""
    migration_id, batch_ids = _started(state, 25)
    tracker = _tracker(state)

    state.mark_batch_completed(batch_ids[0], 10, 9)
    tracker.on_batch_completed(migration_id)
    state.mark_batch_failed(batch_ids[1], "boom", items_received=4)
    migration = tracker.on_batch_failed(migration_id)

    assert migration.processed_items == 13
    assert migration.successful_items == 9
    assert migration.failed_items == 10
    assert migration.status == MIGRATION_IN_PROGRESS


def test_migration_completes_when_all_batches_terminal(state):
    migration_id, batch_ids = _started(state, 20)
    tracker = _tracker(state)

    state.mark_batch_completed(batch_ids[0], 10, 10)
    tracker.on_batch_completed(migration_id)
    state.mark_batch_completed(batch_ids[1], 10, 10)
    migration = tracker.on_batch_completed(migration_id)

    assert migration.status == MIGRATION_COMPLETED
    assert migration.completed_at is not None
    assert migration.summary["items_migrated"] == 20
    assert migration.summary["completed_with_failures"] is False
    assert migration.summary["resource_kinds"]["clients"]["completed"] == 2



def test_retry_drops_reset_batches_from_counters(state):
    """Counters keep the failure until the next recompute after a retry reset."""
    migration_id, batch_ids = _started(state, 20)
    tracker = _tracker(state)

    state.mark_batch_failed(batch_ids[0], "boom", items_received=3)
    tracker.on_batch_failed(migration_id)
    assert state.reset_failed_batches(migration_id) == 1

    migration = state.get_migration(migration_id)
    assert migration.failed_items == 10
    assert migration.processed_items == 3

    state.mark_batch_completed(batch_ids[1], 10, 10)
    migration = tracker.on_batch_completed(migration_id)

    assert migration.status == MIGRATION_IN_PROGRESS
    assert migration.failed_items == 0
    assert migration.processed_items == 10

    state.mark_batch_completed(batch_ids[0], 10, 10)
    migration = tracker.on_batch_completed(migration_id)

    assert migration.status == MIGRATION_COMPLETED
    assert migration.successful_items == 20

def test_completion_with_failures_is_flagged(state):
    """One failed batch out of four completes the migration, flagged."""
    migration_id, batch_ids = _started(state, 40)
    tracker = _tracker(state)

    state.mark_batch_failed(batch_ids[0], "boom")
    tracker.on_batch_failed(migration_id)
    for batch_id in batch_ids[1:]:
        state.mark_batch_completed(batch_id, 10, 10)
        migration = tracker.on_batch_completed(migration_id)

    assert migration.status == MIGRATION_COMPLETED
    assert migration.summary["completed_with_failures"] is True
    assert migration.summary["failed_batches"] == 1


def test_cascade_failure_above_threshold(state):
    """Six failed batches of ten exceed the 50% threshold."""
    migration_id, batch_ids = _started(state, 100)
    tracker = _tracker(state)

    for batch_id in batch_ids[:6]:
        state.mark_batch_failed(batch_id, "boom")
        migration = tracker.on_batch_failed(migration_id)

    assert migration.status == MIGRATION_FAILED
    assert "6 of 10 batches failed" in migration.error_message
    assert migration.summary["failed_batches"] == 6
    # No further dispatch after the cascade
    assert tracker.dispatcher.submit_next(migration_id) is None


def test_below_threshold_keeps_running(state):
    """Four failed batches of ten stay under the threshold."""
    migration_id, batch_ids = _started(state, 100)
    tracker = _tracker(state)

    for batch_id in batch_ids[:4]:
        state.mark_batch_failed(batch_id, "boom")
        migration = tracker.on_batch_failed(migration_id)

    assert migration.status == MIGRATION_IN_PROGRESS
    assert migration.error_message is None


def test_exactly_half_failed_is_not_a_cascade(state):
    migration_id, batch_ids = _started(state, 40)
    tracker = _tracker(state)

    for batch_id in batch_ids[:2]:
        state.mark_batch_failed(batch_id, "boom")
        migration = tracker.on_batch_failed(migration_id)

    assert migration.status == MIGRATION_IN_PROGRESS


def test_each_outcome_dispatches_one_replacement(state):
    """A finished batch pulls in exactly one pending batch."""
    migration_id, batch_ids = _started(state, 50)
    tracker = _tracker(state)

    state.mark_batch_completed(batch_ids[0], 10, 10)
    tracker.on_batch_completed(migration_id)
    state.mark_batch_failed(batch_ids[1], "boom")
    tracker.on_batch_failed(migration_id)

    assert tracker.dispatcher.queue.qsize() == 2
    assert len(state.get_batches(migration_id, status=BATCH_PENDING)) == 2
