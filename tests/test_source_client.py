"""Tests for the DEX HTTP client, served by an httpx mock transport."""

import json

import httpx
import pytest

from dex_migration.client.exceptions import AuthenticationError, NetworkError
from dex_migration.client.source import DexSourceClient, build_criteria
from dex_migration.config import PerformanceConfig, SourceConfig


class Recorder:
    """Mock transport handler that answers every request with one response."""

    def __init__(self, response: httpx.Response):
        self.response = response
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.response

    @property
    def body(self) -> dict:
        return json.loads(self.requests[-1].content)


def _client(handler) -> DexSourceClient:
    return DexSourceClient(
        SourceConfig(url="https://dex.example.test/api", token="test-token"),
        PerformanceConfig(rate_limit=100),
        transport=httpx.MockTransport(handler),
    )


def test_build_criteria_maps_and_drops_filters():
    criteria = build_criteria(
        "cases",
        {"created_date_from": "2024-01-01", "end_date_to": "2024-12-31", "client_id": "C1"},
        page_index=2,
        page_size=50,
    )

    assert criteria == {
        "CreatedDateFrom": "2024-01-01",
        "EndDateTo": "2024-12-31",
        "PageIndex": 2,
        "PageSize": 50,
        "SortColumn": "CreatedDate",
        "IsAscending": True,
    }


def test_build_criteria_keeps_explicit_sort():
    criteria = build_criteria(
        "sessions", {"sort_column": "SessionDate", "is_ascending": False}, 1, 10
    )

    assert criteria["SortColumn"] == "SessionDate"
    assert criteria["IsAscending"] is False


@pytest.mark.asyncio
async def test_search_posts_criteria():
    recorder = Recorder(httpx.Response(200, json={"Clients": {"Client": []}, "TotalCount": 0}))

    async with _client(recorder) as client:
        payload = await client.search("clients", {"created_date_from": "2024-01-01"}, 3, 25)

    assert payload == {"Clients": {"Client": []}, "TotalCount": 0}
    request = recorder.requests[0]
    assert request.method == "POST"
    assert request.url.path == "/api/SearchClient"
    assert request.headers["Authorization"] == "Bearer test-token"
    assert recorder.body["Criteria"]["PageIndex"] == 3
    assert recorder.body["Criteria"]["PageSize"] == 25
    assert recorder.body["Criteria"]["CreatedDateFrom"] == "2024-01-01"


@pytest.mark.asyncio
async def test_fetch_session_sends_parent_case():
    recorder = Recorder(httpx.Response(200, json={"Session": {"SessionId": "S1", "Time": 30}}))

    async with _client(recorder) as client:
        record = await client.fetch_by_id("sessions", "S1", "K1")

    assert record == {"SessionId": "S1", "Time": 30}
    assert recorder.requests[0].url.path == "/api/GetSession"
    assert recorder.body == {"SessionId": "S1", "Criteria": {}, "CaseId": "K1"}


@pytest.mark.asyncio
async def test_fetch_missing_record_returns_none():
    recorder = Recorder(httpx.Response(404, json={"Message": "No such case"}))

    async with _client(recorder) as client:
        assert await client.fetch_by_id("cases", "K404") is None

    assert len(recorder.requests) == 1


@pytest.mark.asyncio
async def test_unauthorized_is_not_retried():
    recorder = Recorder(httpx.Response(401, json={"Message": "bad token"}))

    async with _client(recorder) as client:
        with pytest.raises(AuthenticationError) as exc_info:
            await client.search("clients", {})

    assert exc_info.value.status_code == 401
    assert len(recorder.requests) == 1


@pytest.mark.asyncio
async def test_transport_errors_become_network_errors():
    def broken(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    client = _client(broken)
    try:
        # Bypass the retry wrapper to avoid backoff waits
        with pytest.raises(NetworkError):
            await client.post("SearchClient", json_data={"Criteria": {}})
    finally:
        await client.close()
