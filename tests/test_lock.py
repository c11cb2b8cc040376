"""Tests for the database-backed advisory lock."""

from datetime import timedelta

import pytest
from sqlalchemy import event
from sqlalchemy.exc import OperationalError

from dex_migration.client.exceptions import EnrichmentInProgressError, StateError
from dex_migration.enrichment.lock import AdvisoryLockManager
from dex_migration.migration.database import get_session
from dex_migration.migration.models import AdvisoryLock, utcnow


@pytest.fixture
def locks(state) -> AdvisoryLockManager:
    return AdvisoryLockManager(state.database_url)


def test_acquire_and_release(locks):
    owner = locks.acquire("enrichment:process", 60)

    assert owner is not None
    assert locks.is_locked("enrichment:process")
    assert locks.release("enrichment:process", owner) is True
    assert not locks.is_locked("enrichment:process")


def test_second_acquire_is_refused(locks):
    """The name is unique, so a second holder gets nothing."""
    first = locks.acquire("enrichment:process", 60)

    assert locks.acquire("enrichment:process", 60) is None
    assert locks.acquire("other", 60) is not None

    locks.release("enrichment:process", first)


def test_release_by_wrong_owner_is_ignored(locks):
    owner = locks.acquire("enrichment:process", 60)

    assert locks.release("enrichment:process", "someone-else") is False
    assert locks.is_locked("enrichment:process")

    locks.release("enrichment:process", owner)


def test_expired_lock_is_swept(locks, state):
    """A lock left behind by a dead holder can be taken once it expires."""
    locks.acquire("enrichment:process", 60)
    with get_session(state.database_url) as session:
        lock = session.get(AdvisoryLock, "enrichment:process")
        lock.expires_at = utcnow() - timedelta(seconds=1)

    assert not locks.is_locked("enrichment:process")
    assert locks.acquire("enrichment:process", 60) is not None


def test_hold_releases_on_error(locks):
    with pytest.raises(RuntimeError):
        with locks.hold("enrichment:process", 60):
            assert locks.is_locked("enrichment:process")
            raise RuntimeError("boom")

    assert not locks.is_locked("enrichment:process")


def test_hold_raises_when_busy(locks):
    with locks.hold("enrichment:process", 60):
        with pytest.raises(EnrichmentInProgressError):
            with locks.hold("enrichment:process", 60):
                pass


def test_store_failure_is_not_reported_as_busy(locks):
    """A broken lock table raises StateError instead of looking held."""

    def fail(mapper, connection, target):
        raise OperationalError("INSERT INTO advisory_locks", {}, Exception("disk I/O error"))

    event.listen(AdvisoryLock, "before_insert", fail)
    try:
        with pytest.raises(StateError) as excinfo:
            with locks.hold("enrichment:process", 60):
                pass
        assert isinstance(excinfo.value.__cause__, OperationalError)

        with pytest.raises(StateError):
            locks.acquire("enrichment:process", 60)
    finally:
        event.remove(AdvisoryLock, "before_insert", fail)

    assert not locks.is_locked("enrichment:process")
    assert locks.acquire("enrichment:process", 60) is not None
