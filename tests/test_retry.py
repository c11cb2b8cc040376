"""Tests for the tenacity retry decorator."""

import pytest

from dex_migration.client.exceptions import NetworkError, NotFoundError, ServerError
from dex_migration.utils.retry import retry_with_backoff

fast_retry = retry_with_backoff(max_attempts=3, min_wait=0, max_wait=0)


@pytest.mark.asyncio
async def test_async_transient_errors_are_retried():
    calls = []

    @fast_retry
    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise NetworkError("reset")
        return "ok"

    assert await flaky() == "ok"
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_async_gives_up_after_max_attempts():
    calls = []

    @fast_retry
    async def down():
        calls.append(1)
        raise ServerError("unavailable", status_code=503)

    with pytest.raises(ServerError):
        await down()
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_non_transient_errors_are_not_retried():
    calls = []

    @fast_retry
    async def missing():
        calls.append(1)
        raise NotFoundError("gone", status_code=404)

    with pytest.raises(NotFoundError):
        await missing()
    assert len(calls) == 1


def test_sync_functions_are_retried():
    calls = []

    @fast_retry
    def flaky(value):
        calls.append(value)
        if len(calls) < 2:
            raise NetworkError("reset")
        return value * 2

    assert flaky(21) == 42
    assert calls == [21, 21]
