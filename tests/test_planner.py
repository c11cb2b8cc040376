"""Tests for batch planning and migration creation."""

import pytest
from conftest import FakeSource, make_clients

from dex_migration.client.exceptions import (
    MigrationConflictError,
    ResourceKindError,
    ValidationError,
)
from dex_migration.config import PerformanceConfig
from dex_migration.migration.models import BATCH_PENDING, MIGRATION_PENDING
from dex_migration.migration.planner import BatchPlanner, plan_batches


def test_plan_batches_last_page_requests_remainder():
    """250 items in pages of 100 give 100, 100, 50."""
    batches = plan_batches("clients", 250, 100, {"created_date_from": "2024-01-01"})

    assert [b.batch_number for b in batches] == [1, 2, 3]
    assert [b.page_index for b in batches] == [1, 2, 3]
    assert [b.items_requested for b in batches] == [100, 100, 50]
    assert batches[2].api_filters == {
        "created_date_from": "2024-01-01",
        "page_index": 3,
        "page_size": 100,
    }


def test_plan_batches_exact_multiple():
    batches = plan_batches("cases", 200, 100)
    assert [b.items_requested for b in batches] == [100, 100]


def test_plan_batches_zero_total():
    """No items means no batches."""
    assert plan_batches("sessions", 0, 50) == []


def test_plan_batches_rejects_non_positive_size():
    with pytest.raises(ValidationError):
        plan_batches("clients", 10, 0)


def _planner(state, source, **performance) -> BatchPlanner:
    return BatchPlanner(
        state, source, PerformanceConfig(default_batch_size=10, max_batch_size=100, **performance)
    )


@pytest.mark.asyncio
async def test_create_migration_stores_total_and_batches(state):
    """Totals come from a count request; batches follow the page layout."""
    source = FakeSource({"clients": make_clients(25)})
    migration = await _planner(state, source).create_migration("nightly", ["client"])

    assert migration.status == MIGRATION_PENDING
    assert migration.resource_kinds == ["clients"]
    assert migration.total_items == 25
    assert migration.batch_size == 10

    batches = state.get_batches(migration.id)
    assert [b.items_requested for b in batches] == [10, 10, 5]
    assert all(b.status == BATCH_PENDING for b in batches)
    # One count request per kind, for a single item
    assert source.search_calls == [("clients", {}, 1, 1)]


@pytest.mark.asyncio
async def test_create_migration_uses_fallback_estimate(state):
    """A response without a total falls back to the configured estimate."""
    source = FakeSource({"clients": make_clients(3)})
    source.total_override["clients"] = None

    migration = await _planner(state, source, fallback_total_estimate=30).create_migration(
        "estimate", ["clients"]
    )

    assert migration.total_items == 30
    assert len(state.get_batches(migration.id)) == 3


@pytest.mark.asyncio
async def test_create_migration_zero_total_has_no_batches(state):
    source = FakeSource({"sessions": []})
    migration = await _planner(state, source).create_migration("empty", ["sessions"])

    assert migration.total_items == 0
    assert state.get_batches(migration.id) == []


@pytest.mark.asyncio
async def test_create_migration_count_failure_creates_nothing(state, network_error):
    """A failing count request propagates and leaves no migration behind."""
    source = FakeSource({"clients": make_clients(5)})
    source.fail_pages[("clients", 1)] = network_error

    with pytest.raises(type(network_error)):
        await _planner(state, source).create_migration("broken", ["clients"])

    assert state.list_migrations() == []


@pytest.mark.asyncio
async def test_create_migration_unknown_kind(state):
    with pytest.raises(ResourceKindError):
        await _planner(state, FakeSource()).create_migration("bad", ["invoices"])


@pytest.mark.asyncio
@pytest.mark.parametrize("batch_size", [0, 101])
async def test_create_migration_batch_size_bounds(state, batch_size):
    with pytest.raises(ValidationError):
        await _planner(state, FakeSource()).create_migration(
            "bad", ["clients"], batch_size=batch_size
        )


@pytest.mark.asyncio
async def test_create_migration_conflict_with_active_migration(state):
    """A second pending migration over the same kind is refused."""
    source = FakeSource({"clients": make_clients(5), "cases": []})
    planner = _planner(state, source)
    await planner.create_migration("first", ["clients"])

    with pytest.raises(MigrationConflictError):
        await planner.create_migration("second", ["cases", "clients"])

    # A different kind is fine
    await planner.create_migration("third", ["cases"])
