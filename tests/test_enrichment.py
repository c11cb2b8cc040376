"""Tests for enrichment runs, pausing and shallow session generation."""

import pytest
from conftest import FakeSource, make_cases

from dex_migration.client.exceptions import (
    EnrichmentInProgressError,
    MigrationError,
    ResourceKindError,
)
from dex_migration.enrichment.runner import EnrichmentRunner
from dex_migration.enrichment.shallow import generate_shallow_sessions
from dex_migration.migration.models import RUN_COMPLETED, RUN_PAUSED


def _seed_cases(records, count: int) -> list[dict]:
    cases = make_cases(count)
    for case in cases:
        records.upsert_migrated("cases", case)
    return cases


def _snapshot(records, resource_kind: str) -> list[dict]:
    return [
        {column.name: getattr(row, column.name) for column in row.__table__.columns}
        for row in records.enriched_records(resource_kind)
    ]


@pytest.fixture
def runner(config, records) -> EnrichmentRunner:
    return EnrichmentRunner(config, FakeSource(), records)


@pytest.mark.asyncio
async def test_enrich_cases(runner, records):
    runner.source.records["cases"] = _seed_cases(records, 4)

    stats = await runner.enrich("cases")

    assert stats["total"] == 4
    assert stats["newly_enriched"] == 4
    assert stats["already_enriched"] == 0
    assert stats["failed"] == 0
    assert stats["paused"] is False
    assert records.count_enriched("cases") == 4
    enriched = records.enriched_records("cases")[0]
    assert enriched.outlet_activity_id == 101
    assert enriched.client_count == 1


@pytest.mark.asyncio
async def test_enrich_is_idempotent(runner, records):
    """A second run skips every record and leaves the stored rows untouched."""
    runner.source.records["cases"] = _seed_cases(records, 3)
    await runner.enrich("cases")
    fetches = len(runner.source.fetch_calls)
    before = _snapshot(records, "cases")

    stats = await runner.enrich("cases")

    assert stats["already_enriched"] == 3
    assert stats["newly_enriched"] == 0
    assert len(runner.source.fetch_calls) == fetches
    assert _snapshot(records, "cases") == before


@pytest.mark.asyncio
async def test_record_failure_is_isolated(runner, records, network_error):
    """A missing or failing record is counted; the others are enriched."""
    runner.source.records["cases"] = _seed_cases(records, 5)
    runner.source.details[("cases", "K0003")] = None
    runner.source.fetch_errors[("cases", "K0004")] = network_error

    stats = await runner.enrich("cases")

    assert stats["newly_enriched"] == 3
    assert stats["failed"] == 2
    assert [error["id"] for error in stats["errors"]] == ["K0003", "K0004"]
    assert runner.get_unenriched_ids("cases") == ["K0003", "K0004"]


@pytest.mark.asyncio
async def test_pause_stops_after_current_record(runner, records):
    """A pause requested mid-run stops before the next record."""
    runner.source.records["cases"] = _seed_cases(records, 6)

    def pause_after_second(kind, record_id):
        if record_id == "K0002":
            assert runner.pause("cases") is True

    runner.source.on_fetch = pause_after_second

    stats = await runner.enrich("cases")

    assert stats["paused"] is True
    assert stats["newly_enriched"] == 2
    assert runner.control.latest_run("cases").status == RUN_PAUSED

    runner.source.on_fetch = None
    stats = await runner.resume("cases")

    assert stats["paused"] is False
    assert stats["already_enriched"] == 2
    assert stats["newly_enriched"] == 4
    assert runner.control.latest_run("cases").status == RUN_COMPLETED


def test_pause_without_running_enrichment(runner):
    assert runner.pause("sessions") is False


@pytest.mark.asyncio
async def test_enrichment_is_single_flight(runner, config):
    """A held lock makes a second run fail fast."""
    lock = runner.locks.acquire(config.enrichment.lock_name, 60)

    with pytest.raises(EnrichmentInProgressError):
        await runner.enrich("cases")
    with pytest.raises(EnrichmentInProgressError):
        await runner.restart("cases")

    runner.locks.release(config.enrichment.lock_name, lock)
    assert not runner.locks.is_locked(config.enrichment.lock_name)


@pytest.mark.asyncio
async def test_lock_released_after_run(runner, records, config):
    runner.source.records["cases"] = _seed_cases(records, 1)
    await runner.enrich("cases")
    assert not runner.locks.is_locked(config.enrichment.lock_name)


@pytest.mark.asyncio
async def test_restart_re_enriches_everything(runner, records):
    runner.source.records["cases"] = _seed_cases(records, 3)
    await runner.enrich("cases")

    stats = await runner.restart("cases")

    assert stats["newly_enriched"] == 3
    assert stats["already_enriched"] == 0


@pytest.mark.asyncio
async def test_progress_report(runner, records):
    runner.source.records["cases"] = _seed_cases(records, 4)
    runner.source.details[("cases", "K0001")] = None
    await runner.enrich("cases")

    progress = runner.get_progress("cases")

    assert progress["total"] == 4
    assert progress["enriched"] == 3
    assert progress["unenriched"] == 1
    assert progress["progress_percentage"] == 75.0
    assert progress["is_completed"] is False
    assert progress["latest_run"]["status"] == RUN_COMPLETED


@pytest.mark.asyncio
async def test_enrich_rejects_clients(runner):
    with pytest.raises(ResourceKindError):
        await runner.enrich("clients")


def test_generate_shallow_sessions_from_migrated_cases(records):
    _seed_cases(records, 3)

    stats = generate_shallow_sessions(records)

    assert stats["source"] == "migrated_cases"
    assert stats["total_sessions_found"] == 6
    assert stats["newly_created"] == 6
    assert records.count_shallow("sessions") == 6

    again = generate_shallow_sessions(records)
    assert again["newly_created"] == 0
    assert again["already_existed"] == 6


def test_generate_shallow_sessions_without_cases(records):
    with pytest.raises(MigrationError):
        generate_shallow_sessions(records)


@pytest.mark.asyncio
async def test_enrich_sessions_passes_parent_case(runner, records):
    _seed_cases(records, 1)
    generate_shallow_sessions(records)
    runner.source.records["sessions"] = [
        {"session_id": "S0001-1", "case_id": "K0001", "service_type_id": 3, "time": 45},
        {"session_id": "S0001-2", "case_id": "K0001", "service_type_id": 4, "time": 30},
    ]

    stats = await runner.enrich("sessions")

    assert stats["newly_enriched"] == 2
    assert ("sessions", "S0001-1", ("K0001",)) in runner.source.fetch_calls
    session = records.enriched_records("sessions")[0]
    assert session.case_id == "K0001"
    assert session.service_type_id == 3
