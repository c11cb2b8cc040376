"""
Shared pytest fixtures for the DEX Bridge tests.

Every test gets its own SQLite file under ``tmp_path``; the fake source
serves pages out of in-memory record lists.
"""

import asyncio
from typing import Any

import pytest

from dex_migration.client.exceptions import NetworkError
from dex_migration.config import (
    DexBridgeConfig,
    PerformanceConfig,
    SourceConfig,
    StateConfig,
)
from dex_migration.migration.records import RecordStore
from dex_migration.migration.state import MigrationState
from dex_migration.resources import get_info


class FakeSource:
    """In-memory source adapter.

    ``records`` maps a kind to the full list of its items; ``search`` slices
    it by page and reports the list length as ``TotalCount``.
    """

    def __init__(self, records: dict[str, list[dict[str, Any]]] | None = None):
        self.records = records or {}
        self.details: dict[tuple[str, str], dict[str, Any] | None] = {}
        self.fail_pages: dict[tuple[str, int], Exception] = {}
        self.hang_pages: set[tuple[str, int]] = set()
        self.fetch_errors: dict[tuple[str, str], Exception] = {}
        self.total_override: dict[str, Any] = {}
        self.search_calls: list[tuple[str, dict[str, Any], int, int]] = []
        self.fetch_calls: list[tuple[str, str, tuple[str, ...]]] = []
        self.on_fetch = None

    async def search(
        self,
        resource_kind: str,
        filters: dict[str, Any],
        page_index: int = 1,
        page_size: int = 100,
    ) -> Any:
        self.search_calls.append((resource_kind, dict(filters), page_index, page_size))
        if (resource_kind, page_index) in self.hang_pages:
            await asyncio.sleep(3600)
        error = self.fail_pages.get((resource_kind, page_index))
        if error is not None:
            raise error

        items = self.records.get(resource_kind, [])
        start = (page_index - 1) * page_size
        page = items[start : start + page_size]
        info = get_info(resource_kind)
        total = self.total_override.get(resource_kind, len(items))
        response: dict[str, Any] = {info.collection_key: {info.item_key: page}}
        if total is not None:
            response["TotalCount"] = total
        return response

    async def fetch_by_id(
        self, resource_kind: str, record_id: str, *parent_ids: str
    ) -> dict[str, Any] | None:
        self.fetch_calls.append((resource_kind, record_id, parent_ids))
        if self.on_fetch is not None:
            self.on_fetch(resource_kind, record_id)
        error = self.fetch_errors.get((resource_kind, record_id))
        if error is not None:
            raise error
        if (resource_kind, record_id) in self.details:
            return self.details[(resource_kind, record_id)]

        info = get_info(resource_kind)
        for item in self.records.get(resource_kind, []):
            if str(item.get(info.id_field)) == record_id:
                return dict(item)
        return None


def make_clients(count: int) -> list[dict[str, Any]]:
    return [
        {
            "client_id": f"C{number:04d}",
            "first_name": f"Given{number}",
            "last_name": f"Family{number}",
            "gender": "F" if number % 2 else "M",
            "suburb": "Carlton",
            "state": "VIC",
            "postal_code": "3053",
        }
        for number in range(1, count + 1)
    ]


def make_cases(count: int, sessions_per_case: int = 2) -> list[dict[str, Any]]:
    return [
        {
            "case_id": f"K{number:04d}",
            "client_ids": [f"C{number:04d}"],
            "outlet_name": "Northside",
            "outlet_activity_id": 100 + number,
            "referral_source_code": "SELF",
            "end_date": "2024-06-30",
            "session_ids": [f"S{number:04d}-{s}" for s in range(1, sessions_per_case + 1)],
        }
        for number in range(1, count + 1)
    ]


def make_sessions(count: int) -> list[dict[str, Any]]:
    return [
        {
            "session_id": f"S{number:04d}",
            "case_id": "K0001",
            "session_date": "2024-03-01",
            "service_type_id": 5,
            "time": 60,
        }
        for number in range(1, count + 1)
    ]


@pytest.fixture
def state_config(tmp_path) -> StateConfig:
    return StateConfig(db_path=str(tmp_path / "state.db"))


@pytest.fixture
def config(state_config) -> DexBridgeConfig:
    return DexBridgeConfig(
        source=SourceConfig(url="https://dex.example.test/api", token="test-token"),
        state=state_config,
        performance=PerformanceConfig(
            default_batch_size=10,
            max_batch_size=100,
            max_in_flight_batches=3,
            batch_timeout=5.0,
        ),
    )


@pytest.fixture
def state(state_config) -> MigrationState:
    return MigrationState(state_config)


@pytest.fixture
def records(state_config, state) -> RecordStore:
    return RecordStore(state_config)


@pytest.fixture
def source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def network_error() -> NetworkError:
    return NetworkError("connection reset by peer")
