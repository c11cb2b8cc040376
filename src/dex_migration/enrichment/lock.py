"""Database-backed advisory lock with expiry.

A lock is a row keyed by name. Acquiring inserts the row; the primary key
makes a second insert fail, which is how contention is detected. Rows past
their expiry are swept before each attempt so a crashed holder cannot block
forever.
"""

import uuid
from collections.abc import Generator
from contextlib import contextmanager
from datetime import timedelta

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError

from dex_migration.client.exceptions import EnrichmentInProgressError, StateError
from dex_migration.migration.database import get_session
from dex_migration.migration.models import AdvisoryLock, utcnow
from dex_migration.utils.logging import get_logger

logger = get_logger(__name__)


class AdvisoryLockManager:
    """Acquire and release named locks in the state database."""

    def __init__(self, database_url: str):
        self.database_url = database_url

    def acquire(self, name: str, ttl_seconds: int) -> str | None:
        """
        Try to take the lock.

        Returns:
            An owner token if acquired, None if another holder has it

        Raises:
            StateError: If the lock table cannot be written
        """
        owner = uuid.uuid4().hex
        now = utcnow()

        with get_session(self.database_url) as session:
            session.execute(
                delete(AdvisoryLock).where(
                    AdvisoryLock.name == name, AdvisoryLock.expires_at <= now
                )
            )

        try:
            with get_session(self.database_url) as session:
                session.add(
                    AdvisoryLock(
                        name=name,
                        owner=owner,
                        acquired_at=now,
                        expires_at=now + timedelta(seconds=ttl_seconds),
                    )
                )
        except StateError as e:
            # Only the primary key collision means busy
            if not isinstance(e.__cause__, IntegrityError):
                raise
            logger.info("lock_busy", lock=name)
            return None

        logger.debug("lock_acquired", lock=name, ttl=ttl_seconds)
        return owner

    def release(self, name: str, owner: str) -> bool:
        """Release the lock if ``owner`` still holds it."""
        with get_session(self.database_url) as session:
            result = session.execute(
                delete(AdvisoryLock).where(AdvisoryLock.name == name, AdvisoryLock.owner == owner)
            )
            released = result.rowcount == 1
        if released:
            logger.debug("lock_released", lock=name)
        else:
            logger.warning("lock_release_missed", lock=name)
        return released

    def is_locked(self, name: str) -> bool:
        with get_session(self.database_url) as session:
            lock = session.get(AdvisoryLock, name)
            return lock is not None and lock.expires_at > utcnow()

    @contextmanager
    def hold(self, name: str, ttl_seconds: int) -> Generator[str, None, None]:
        """
        Hold the lock for the duration of the block, releasing it on every exit path.

        Raises:
            EnrichmentInProgressError: If the lock is already held
        """
        owner = self.acquire(name, ttl_seconds)
        if owner is None:
            raise EnrichmentInProgressError(
                f"Another enrichment run holds the '{name}' lock; try again once it finishes"
            )
        try:
            yield owner
        finally:
            self.release(name, owner)
