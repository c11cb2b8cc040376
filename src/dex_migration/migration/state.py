"""
Migration state management.

This module provides the MigrationState class, the durable store for
migrations and their batches. Every status change that more than one worker
could race on is a conditional ``UPDATE ... WHERE status = ...`` so that the
database, not the caller, decides who wins.
"""

import threading
from collections.abc import Iterable
from typing import Any

from sqlalchemy import func, update

from dex_migration.client.exceptions import (
    DexMigrationError,
    InvalidTransitionError,
    MigrationNotFoundError,
    StateError,
)
from dex_migration.config import StateConfig
from dex_migration.migration.database import get_session, init_database, resolve_database_url
from dex_migration.migration.models import (
    BATCH_CANCELLED,
    BATCH_COMPLETED,
    BATCH_FAILED,
    BATCH_PENDING,
    BATCH_PROCESSING,
    BATCH_STATUSES,
    BATCH_TERMINAL_STATUSES,
    MIGRATION_CANCELLED,
    MIGRATION_COMPLETED,
    MIGRATION_FAILED,
    MIGRATION_IN_PROGRESS,
    MIGRATION_PENDING,
    MIGRATION_TERMINAL_STATUSES,
    Migration,
    MigrationBatch,
    utcnow,
)
from dex_migration.utils.logging import get_logger

logger = get_logger(__name__)

ACTIVE_MIGRATION_STATUSES = (MIGRATION_PENDING, MIGRATION_IN_PROGRESS)


class MigrationState:
    """
    Thread-safe store for migrations and batches.

    Usage:
        state = MigrationState(config.state)
        migration = state.create_migration("nightly", ["clients"], {}, 100)
        state.set_total_items(migration.id, 250)
    """

    def __init__(self, config: StateConfig):
        """
        Initialize the store and make sure the schema exists.

        Args:
            config: State configuration

        Raises:
            StateError: If initialization fails
        """
        self.config = config
        self.database_url = resolve_database_url(config.db_path)
        self._lock = threading.RLock()

        try:
            init_database(
                self.database_url,
                pool_size=config.db_pool_size,
                max_overflow=config.db_max_overflow,
                pool_timeout=config.db_pool_timeout,
                pool_recycle=config.db_pool_recycle,
            )
        except Exception as e:
            logger.error("state_init_failed", error=str(e))
            raise StateError(f"Failed to initialize migration state: {e}") from e

    # Migrations

    def create_migration(
        self,
        name: str,
        resource_kinds: list[str],
        filters: dict[str, Any],
        batch_size: int,
    ) -> Migration:
        """Insert a pending migration with zeroed counters."""
        with self._lock:
            try:
                with get_session(self.database_url) as session:
                    migration = Migration(
                        name=name,
                        resource_kinds=list(resource_kinds),
                        filters=dict(filters),
                        batch_size=batch_size,
                        status=MIGRATION_PENDING,
                    )
                    session.add(migration)
                    session.flush()
                    logger.info(
                        "migration_created",
                        migration_id=migration.id,
                        name=name,
                        resource_kinds=resource_kinds,
                        batch_size=batch_size,
                    )
                    return migration

            except DexMigrationError:
                raise
            except Exception as e:
                logger.error("migration_create_failed", name=name, error=str(e))
                raise StateError(f"Failed to create migration: {e}") from e

    def get_migration(self, migration_id: int) -> Migration:
        """
        Load a migration.

        Raises:
            MigrationNotFoundError: If the id does not exist
        """
        with self._lock:
            with get_session(self.database_url) as session:
                migration = session.get(Migration, migration_id)
                if migration is None:
                    raise MigrationNotFoundError(f"Migration {migration_id} not found")
                return migration

    def list_migrations(
        self, status: str | None = None, limit: int | None = None
    ) -> list[Migration]:
        """Migrations, newest first, optionally filtered by status."""
        with self._lock:
            with get_session(self.database_url) as session:
                query = session.query(Migration)
                if status:
                    query = query.filter(Migration.status == status)
                query = query.order_by(Migration.id.desc())
                if limit:
                    query = query.limit(limit)
                return query.all()

    def find_active_conflicts(self, resource_kinds: Iterable[str]) -> list[Migration]:
        """Pending or in-progress migrations that cover any of ``resource_kinds``."""
        wanted = set(resource_kinds)
        with self._lock:
            with get_session(self.database_url) as session:
                active = (
                    session.query(Migration)
                    .filter(Migration.status.in_(ACTIVE_MIGRATION_STATUSES))
                    .order_by(Migration.id)
                    .all()
                )
                return [m for m in active if wanted.intersection(m.resource_kinds or [])]

    def set_total_items(self, migration_id: int, total_items: int) -> None:
        """Store the planned item count on a migration."""
        with self._lock:
            with get_session(self.database_url) as session:
                migration = self._load(session, migration_id)
                migration.total_items = total_items

    def mark_migration_started(self, migration_id: int) -> Migration:
        """
        Move a pending migration to in_progress.

        Raises:
            InvalidTransitionError: If the migration is not pending
        """
        with self._lock:
            with get_session(self.database_url) as session:
                migration = self._load(session, migration_id)
                if migration.status != MIGRATION_PENDING:
                    raise InvalidTransitionError(
                        f"Migration {migration_id} cannot be started from status "
                        f"'{migration.status}'"
                    )
                migration.status = MIGRATION_IN_PROGRESS
                migration.started_at = utcnow()
                logger.info("migration_started", migration_id=migration_id)
                return migration

    def complete_migration(self, migration_id: int, summary: dict[str, Any]) -> bool:
        """
        Mark an in-progress migration completed and freeze its summary.

        Returns:
            False if the migration was no longer in progress
        """
        with self._lock:
            with get_session(self.database_url) as session:
                result = session.execute(
                    update(Migration)
                    .where(Migration.id == migration_id, Migration.status == MIGRATION_IN_PROGRESS)
                    .values(status=MIGRATION_COMPLETED, completed_at=utcnow(), summary=summary)
                )
                completed = result.rowcount == 1
                if completed:
                    logger.info("migration_completed", migration_id=migration_id)
                return completed

    def fail_migration(
        self, migration_id: int, error_message: str, summary: dict[str, Any] | None = None
    ) -> bool:
        """
        Mark an in-progress migration failed.

        Returns:
            False if the migration was no longer in progress
        """
        with self._lock:
            with get_session(self.database_url) as session:
                result = session.execute(
                    update(Migration)
                    .where(Migration.id == migration_id, Migration.status == MIGRATION_IN_PROGRESS)
                    .values(
                        status=MIGRATION_FAILED,
                        error_message=error_message,
                        completed_at=utcnow(),
                        summary=summary,
                    )
                )
                failed = result.rowcount == 1
                if failed:
                    logger.error(
                        "migration_failed", migration_id=migration_id, error=error_message
                    )
                return failed

    def cancel_migration(self, migration_id: int) -> int:
        """
        Cancel a migration and its pending batches.

        Batches already processing are left to finish.

        Returns:
            Number of batches cancelled

        Raises:
            InvalidTransitionError: If the migration already finished
        """
        with self._lock:
            with get_session(self.database_url) as session:
                migration = self._load(session, migration_id)
                if migration.status in MIGRATION_TERMINAL_STATUSES:
                    raise InvalidTransitionError(
                        f"Migration {migration_id} is already {migration.status}"
                    )

                result = session.execute(
                    update(MigrationBatch)
                    .where(
                        MigrationBatch.migration_id == migration_id,
                        MigrationBatch.status == BATCH_PENDING,
                    )
                    .values(status=BATCH_CANCELLED, completed_at=utcnow())
                )
                migration.status = MIGRATION_CANCELLED
                migration.completed_at = utcnow()

                logger.warning(
                    "migration_cancelled",
                    migration_id=migration_id,
                    batches_cancelled=result.rowcount,
                )
                return result.rowcount

    def reset_failed_batches(self, migration_id: int) -> int:
        """
        Return failed batches to pending and reopen the migration.

        Completed batches and the stored item counters are untouched; see
        ``recompute_counters`` for how the counters move afterwards.

        Returns:
            Number of batches reset

        Raises:
            InvalidTransitionError: If the migration is pending or cancelled
        """
        with self._lock:
            with get_session(self.database_url) as session:
                migration = self._load(session, migration_id)
                if migration.status in (MIGRATION_PENDING, MIGRATION_CANCELLED):
                    raise InvalidTransitionError(
                        f"Migration {migration_id} cannot be retried from status "
                        f"'{migration.status}'"
                    )

                result = session.execute(
                    update(MigrationBatch)
                    .where(
                        MigrationBatch.migration_id == migration_id,
                        MigrationBatch.status == BATCH_FAILED,
                    )
                    .values(
                        status=BATCH_PENDING,
                        error_message=None,
                        started_at=None,
                        completed_at=None,
                        items_received=0,
                        items_stored=0,
                    )
                )
                self._reopen(migration)
                logger.info(
                    "failed_batches_reset", migration_id=migration_id, count=result.rowcount
                )
                return result.rowcount

    def reset_stalled_batches(self, migration_id: int) -> int:
        """
        Return batches stuck in processing to pending and reopen the migration.

        Used after a crash left batches claimed with no live worker.

        Returns:
            Number of batches reset

        Raises:
            InvalidTransitionError: If the migration is not in progress or failed
        """
        with self._lock:
            with get_session(self.database_url) as session:
                migration = self._load(session, migration_id)
                if migration.status not in (MIGRATION_IN_PROGRESS, MIGRATION_FAILED):
                    raise InvalidTransitionError(
                        f"Migration {migration_id} cannot be restarted from status "
                        f"'{migration.status}'"
                    )

                result = session.execute(
                    update(MigrationBatch)
                    .where(
                        MigrationBatch.migration_id == migration_id,
                        MigrationBatch.status == BATCH_PROCESSING,
                    )
                    .values(status=BATCH_PENDING, error_message=None, started_at=None)
                )
                self._reopen(migration)
                logger.info(
                    "stalled_batches_reset", migration_id=migration_id, count=result.rowcount
                )
                return result.rowcount

    def recompute_counters(self, migration_id: int) -> Migration:
        """
        Rebuild the migration's item counters from its batches in one transaction.

        processed = stored in completed batches + received by failed batches,
        successful = stored in completed batches,
        failed = requested by failed batches.

        The totals only grow while batches reach terminal states. Retry is the
        one exception: ``reset_failed_batches`` leaves the stored counters as they
        were, and the next recompute drops the reset batches from ``failed`` and
        ``processed`` until they finish again.
        """
        with self._lock:
            with get_session(self.database_url) as session:
                migration = self._load(session, migration_id)

                def total(column, status: str) -> int:
                    return (
                        session.query(func.coalesce(func.sum(column), 0))
                        .filter(
                            MigrationBatch.migration_id == migration_id,
                            MigrationBatch.status == status,
                        )
                        .scalar()
                    )

                stored = total(MigrationBatch.items_stored, BATCH_COMPLETED)
                received_by_failed = total(MigrationBatch.items_received, BATCH_FAILED)
                requested_by_failed = total(MigrationBatch.items_requested, BATCH_FAILED)

                migration.processed_items = stored + received_by_failed
                migration.successful_items = stored
                migration.failed_items = requested_by_failed
                return migration

    # Batches

    def create_batches(self, migration_id: int, descriptors: Iterable[Any]) -> int:
        """
        Insert pending batches for a migration.

        Args:
            migration_id: Owning migration
            descriptors: Objects with resource_kind, batch_number, page_index,
                page_size, items_requested and api_filters attributes

        Returns:
            Number of batches created
        """
        with self._lock:
            try:
                with get_session(self.database_url) as session:
                    self._load(session, migration_id)
                    count = 0
                    for descriptor in descriptors:
                        session.add(
                            MigrationBatch(
                                migration_id=migration_id,
                                resource_kind=descriptor.resource_kind,
                                batch_number=descriptor.batch_number,
                                page_index=descriptor.page_index,
                                page_size=descriptor.page_size,
                                items_requested=descriptor.items_requested,
                                api_filters=dict(descriptor.api_filters),
                                status=BATCH_PENDING,
                            )
                        )
                        count += 1
                    logger.info("batches_created", migration_id=migration_id, count=count)
                    return count

            except DexMigrationError:
                raise
            except Exception as e:
                logger.error("batch_create_failed", migration_id=migration_id, error=str(e))
                raise StateError(f"Failed to create batches: {e}") from e

    def get_batch(self, batch_id: int) -> MigrationBatch:
        """
        Load a batch.

        Raises:
            StateError: If the id does not exist
        """
        with self._lock:
            with get_session(self.database_url) as session:
                batch = session.get(MigrationBatch, batch_id)
                if batch is None:
                    raise StateError(f"Batch {batch_id} not found")
                return batch

    def get_batches(
        self,
        migration_id: int,
        status: str | None = None,
        resource_kind: str | None = None,
    ) -> list[MigrationBatch]:
        """Batches of a migration in dispatch order."""
        with self._lock:
            with get_session(self.database_url) as session:
                query = session.query(MigrationBatch).filter(
                    MigrationBatch.migration_id == migration_id
                )
                if status:
                    query = query.filter(MigrationBatch.status == status)
                if resource_kind:
                    query = query.filter(MigrationBatch.resource_kind == resource_kind)
                return query.order_by(
                    MigrationBatch.resource_kind, MigrationBatch.batch_number
                ).all()

    def claim_pending_batches(self, migration_id: int, limit: int) -> list[int]:
        """
        Atomically move up to ``limit`` pending batches to processing.

        Candidates are taken in ``(resource_kind, batch_number)`` order. A batch
        another caller claimed first is skipped, so each id is returned to
        exactly one caller.

        Returns:
            Ids of the batches claimed
        """
        if limit <= 0:
            return []

        with self._lock:
            with get_session(self.database_url) as session:
                candidates = (
                    session.query(MigrationBatch.id)
                    .filter(
                        MigrationBatch.migration_id == migration_id,
                        MigrationBatch.status == BATCH_PENDING,
                    )
                    .order_by(MigrationBatch.resource_kind, MigrationBatch.batch_number)
                    .limit(limit)
                    .all()
                )

                claimed = []
                for (batch_id,) in candidates:
                    result = session.execute(
                        update(MigrationBatch)
                        .where(
                            MigrationBatch.id == batch_id, MigrationBatch.status == BATCH_PENDING
                        )
                        .values(status=BATCH_PROCESSING)
                    )
                    if result.rowcount == 1:
                        claimed.append(batch_id)

                if claimed:
                    logger.debug("batches_claimed", migration_id=migration_id, batch_ids=claimed)
                return claimed

    def mark_batch_started(self, batch_id: int) -> MigrationBatch:
        """Stamp the start time of a claimed batch."""
        with self._lock:
            with get_session(self.database_url) as session:
                batch = self._load_batch(session, batch_id)
                batch.started_at = utcnow()
                return batch

    def mark_batch_completed(
        self, batch_id: int, items_received: int, items_stored: int
    ) -> MigrationBatch:
        """Record a finished batch and its item counts."""
        with self._lock:
            with get_session(self.database_url) as session:
                batch = self._load_batch(session, batch_id)
                batch.status = BATCH_COMPLETED
                batch.items_received = items_received
                batch.items_stored = items_stored
                batch.error_message = None
                batch.completed_at = utcnow()
                logger.info(
                    "batch_completed",
                    batch_id=batch_id,
                    migration_id=batch.migration_id,
                    resource_kind=batch.resource_kind,
                    batch_number=batch.batch_number,
                    items_received=items_received,
                    items_stored=items_stored,
                )
                return batch

    def mark_batch_failed(
        self, batch_id: int, error_message: str, items_received: int = 0
    ) -> MigrationBatch:
        """Record a batch whose page could not be fetched."""
        with self._lock:
            with get_session(self.database_url) as session:
                batch = self._load_batch(session, batch_id)
                batch.status = BATCH_FAILED
                batch.items_received = items_received
                batch.items_stored = 0
                batch.error_message = error_message
                batch.completed_at = utcnow()
                logger.warning(
                    "batch_failed",
                    batch_id=batch_id,
                    migration_id=batch.migration_id,
                    resource_kind=batch.resource_kind,
                    batch_number=batch.batch_number,
                    error=error_message,
                )
                return batch

    def batch_status_counts(self, migration_id: int) -> dict[str, int]:
        """Number of batches in each status, with every status present."""
        with self._lock:
            with get_session(self.database_url) as session:
                rows = (
                    session.query(MigrationBatch.status, func.count(MigrationBatch.id))
                    .filter(MigrationBatch.migration_id == migration_id)
                    .group_by(MigrationBatch.status)
                    .all()
                )
        counts = {status: 0 for status in BATCH_STATUSES}
        counts.update({status: count for status, count in rows})
        counts["total"] = sum(count for status, count in rows)
        return counts

    def all_batches_terminal(self, migration_id: int) -> bool:
        """True when no batch of the migration is pending or processing."""
        counts = self.batch_status_counts(migration_id)
        return sum(counts[status] for status in BATCH_TERMINAL_STATUSES) == counts["total"]

    def batch_breakdown(self, migration_id: int) -> dict[str, dict[str, int]]:
        """Per resource kind: batch counts by status and items stored by completed batches."""
        with self._lock:
            with get_session(self.database_url) as session:
                rows = (
                    session.query(
                        MigrationBatch.resource_kind,
                        MigrationBatch.status,
                        func.count(MigrationBatch.id),
                        func.coalesce(func.sum(MigrationBatch.items_stored), 0),
                        func.coalesce(func.sum(MigrationBatch.items_requested), 0),
                    )
                    .filter(MigrationBatch.migration_id == migration_id)
                    .group_by(MigrationBatch.resource_kind, MigrationBatch.status)
                    .all()
                )

        breakdown: dict[str, dict[str, int]] = {}
        for kind, status, count, stored, requested in rows:
            entry = breakdown.setdefault(
                kind,
                {"total_batches": 0, "items_planned": 0, "items_migrated": 0}
                | {status_name: 0 for status_name in BATCH_STATUSES},
            )
            entry[status] += count
            entry["total_batches"] += count
            entry["items_planned"] += requested
            if status == BATCH_COMPLETED:
                entry["items_migrated"] += stored
        return breakdown

    # Helpers

    def _load(self, session, migration_id: int) -> Migration:
        migration = session.get(Migration, migration_id)
        if migration is None:
            raise MigrationNotFoundError(f"Migration {migration_id} not found")
        return migration

    def _load_batch(self, session, batch_id: int) -> MigrationBatch:
        batch = session.get(MigrationBatch, batch_id)
        if batch is None:
            raise StateError(f"Batch {batch_id} not found")
        return batch

    def _reopen(self, migration: Migration) -> None:
        migration.status = MIGRATION_IN_PROGRESS
        migration.error_message = None
        migration.completed_at = None
        migration.summary = None
        if migration.started_at is None:
            migration.started_at = utcnow()
