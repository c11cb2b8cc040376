"""Tests for the migration coordinator, end to end over a fake source."""

import pytest
from conftest import FakeSource, make_cases, make_clients

from dex_migration.client.exceptions import InvalidTransitionError, MigrationNotFoundError
from dex_migration.migration.coordinator import MigrationCoordinator
from dex_migration.migration.models import (
    BATCH_CANCELLED,
    BATCH_PROCESSING,
    MIGRATION_CANCELLED,
    MIGRATION_COMPLETED,
    MIGRATION_FAILED,
)


@pytest.fixture
def coordinator(config, state, records) -> MigrationCoordinator:
    source = FakeSource({"clients": make_clients(25), "cases": make_cases(12)})
    return MigrationCoordinator(config, source, state=state, records=records)


@pytest.mark.asyncio
async def test_full_migration_run(coordinator, records):
    """Every batch runs and every item is stored."""
    migration_id = await coordinator.create_migration("all", ["clients", "cases"])
    status = await coordinator.start_migration(migration_id)

    assert status["status"] == MIGRATION_COMPLETED
    assert status["total_items"] == 37
    assert status["processed_items"] == 37
    assert status["successful_items"] == 37
    assert status["failed_items"] == 0
    assert status["progress_percentage"] == 100.0
    assert status["success_rate"] == 100.0
    assert status["completed_with_failures"] is False
    assert records.count_migrated("clients") == 25
    assert records.count_migrated("cases") == 12
    assert records.count_shallow("cases") == 12


@pytest.mark.asyncio
async def test_start_twice_is_rejected(coordinator):
    migration_id = await coordinator.create_migration("once", ["clients"])
    await coordinator.start_migration(migration_id)

    with pytest.raises(InvalidTransitionError):
        await coordinator.start_migration(migration_id)


@pytest.mark.asyncio
async def test_zero_total_migration_completes_on_start(coordinator):
    coordinator.source.records["sessions"] = []
    migration_id = await coordinator.create_migration("empty", ["sessions"])

    status = await coordinator.start_migration(migration_id)

    assert status["status"] == MIGRATION_COMPLETED
    assert status["batch_counts"]["total"] == 0


@pytest.mark.asyncio
async def test_cascade_failure_then_retry(coordinator, network_error):
    """Two of three failed batches fail the migration; retry finishes it."""
    coordinator.source.fail_pages[("clients", 1)] = network_error
    coordinator.source.fail_pages[("clients", 2)] = network_error
    migration_id = await coordinator.create_migration("flaky", ["clients"])

    status = await coordinator.start_migration(migration_id)

    assert status["status"] == MIGRATION_FAILED
    assert "failure threshold" in status["error_message"]
    assert status["batch_counts"]["failed"] == 2
    assert status["summary"]["failed_batches"] == 2

    coordinator.source.fail_pages.clear()
    status = await coordinator.retry_migration(migration_id)

    assert status["status"] == MIGRATION_COMPLETED
    assert status["error_message"] is None
    assert status["successful_items"] == 25
    assert status["failed_items"] == 0
    assert status["summary"]["failed_batches"] == 0


@pytest.mark.asyncio
async def test_single_failure_completes_with_failures(coordinator, network_error):
    coordinator.source.fail_pages[("clients", 3)] = network_error
    migration_id = await coordinator.create_migration("partial", ["clients"])

    status = await coordinator.start_migration(migration_id)

    assert status["status"] == MIGRATION_COMPLETED
    assert status["completed_with_failures"] is True
    assert status["successful_items"] == 20
    assert status["failed_items"] == 5


@pytest.mark.asyncio
async def test_retry_is_rejected_for_pending_migration(coordinator):
    migration_id = await coordinator.create_migration("pending", ["clients"])

    with pytest.raises(InvalidTransitionError):
        await coordinator.retry_migration(migration_id)


@pytest.mark.asyncio
async def test_cancel_pending_migration(coordinator, state):
    migration_id = await coordinator.create_migration("cancel me", ["clients"])

    result = coordinator.cancel_migration(migration_id)

    assert result == {
        "migration_id": migration_id,
        "status": MIGRATION_CANCELLED,
        "batches_cancelled": 3,
    }
    assert all(b.status == BATCH_CANCELLED for b in state.get_batches(migration_id))
    with pytest.raises(InvalidTransitionError):
        coordinator.cancel_migration(migration_id)


@pytest.mark.asyncio
async def test_restart_resumes_stalled_batches(coordinator, state, records):
    """Batches left processing by a dead run are picked up again."""
    migration_id = await coordinator.create_migration("stalled", ["clients"])
    state.mark_migration_started(migration_id)
    state.claim_pending_batches(migration_id, 2)
    assert len(state.get_batches(migration_id, status=BATCH_PROCESSING)) == 2

    status = await coordinator.restart_migration(migration_id)

    assert status["status"] == MIGRATION_COMPLETED
    assert records.count_migrated("clients") == 25


@pytest.mark.asyncio
async def test_status_and_list(coordinator):
    first = await coordinator.create_migration("first", ["clients"])
    second = await coordinator.create_migration("second", ["cases"])
    await coordinator.start_migration(first)

    status = coordinator.get_migration_status(first)
    assert [b["batch_number"] for b in status["batches"]] == [1, 2, 3]
    assert status["batches"][2]["items_requested"] == 5

    listed = coordinator.list_migrations()
    assert [m["id"] for m in listed] == [second, first]
    assert [m["id"] for m in coordinator.list_migrations(status=MIGRATION_COMPLETED)] == [first]


def test_status_of_unknown_migration(coordinator):
    with pytest.raises(MigrationNotFoundError):
        coordinator.get_migration_status(999)
