"""Migration coordinator: the operator-facing facade over planning and dispatch.

A started migration runs inside the calling event loop until its queue
drains: the dispatcher opens a window of claimed batches, the worker pool
processes them and each finished batch pulls in exactly one more.
"""

import asyncio
from typing import Any

from dex_migration.client.source import SourceAdapter
from dex_migration.config import DexBridgeConfig
from dex_migration.migration.dispatcher import BatchDispatcher
from dex_migration.migration.models import (
    BATCH_FAILED,
    MIGRATION_COMPLETED,
    Migration,
    MigrationBatch,
)
from dex_migration.migration.planner import BatchPlanner
from dex_migration.migration.processor import BatchProcessor
from dex_migration.migration.progress import ProgressTracker
from dex_migration.migration.records import RecordStore
from dex_migration.migration.state import MigrationState
from dex_migration.migration.workers import BatchWorkerPool
from dex_migration.utils.logging import get_logger

logger = get_logger(__name__)


def _iso(value) -> str | None:
    return value.isoformat() if value else None


class MigrationCoordinator:
    """Creates, runs and reports on migrations."""

    def __init__(
        self,
        config: DexBridgeConfig,
        source: SourceAdapter,
        state: MigrationState | None = None,
        records: RecordStore | None = None,
    ):
        self.config = config
        self.source = source
        self.state = state or MigrationState(config.state)
        self.records = records or RecordStore(config.state)
        self.planner = BatchPlanner(self.state, source, config.performance)

    async def create_migration(
        self,
        name: str,
        resource_kinds: list[str],
        filters: dict[str, Any] | None = None,
        batch_size: int | None = None,
    ) -> int:
        """Plan a migration and its batches. Returns the new migration id."""
        migration = await self.planner.create_migration(name, resource_kinds, filters, batch_size)
        return migration.id

    async def start_migration(self, migration_id: int) -> dict[str, Any]:
        """Start a pending migration and run it until no batch is in flight."""
        self.state.mark_migration_started(migration_id)
        return await self._run(migration_id)

    async def retry_migration(self, migration_id: int) -> dict[str, Any]:
        """Re-run the failed batches of a migration; completed batches are kept."""
        reset = self.state.reset_failed_batches(migration_id)
        logger.info("migration_retry", migration_id=migration_id, batches_reset=reset)
        return await self._run(migration_id)

    async def restart_migration(self, migration_id: int) -> dict[str, Any]:
        """Resume a migration whose batches were left processing by a dead worker."""
        reset = self.state.reset_stalled_batches(migration_id)
        logger.info("migration_restart", migration_id=migration_id, batches_reset=reset)
        return await self._run(migration_id)

    def cancel_migration(self, migration_id: int) -> dict[str, Any]:
        """Cancel a migration. Batches already processing finish normally."""
        cancelled = self.state.cancel_migration(migration_id)
        return {
            "migration_id": migration_id,
            "status": self.state.get_migration(migration_id).status,
            "batches_cancelled": cancelled,
        }

    async def _run(self, migration_id: int) -> dict[str, Any]:
        performance = self.config.performance
        queue: asyncio.Queue[int] = asyncio.Queue()
        dispatcher = BatchDispatcher(self.state, queue, performance.max_in_flight_batches)
        tracker = ProgressTracker(self.state, dispatcher, performance.failure_threshold)

        if self.state.all_batches_terminal(migration_id):
            self.state.recompute_counters(migration_id)
            self.state.complete_migration(migration_id, tracker.build_summary(migration_id))
            return self.get_migration_status(migration_id)

        processor = BatchProcessor(
            self.state, self.records, self.source, tracker, timeout=performance.batch_timeout
        )
        dispatcher.fill(migration_id)
        await BatchWorkerPool(queue, processor.process, performance.max_in_flight_batches).drain()

        status = self.get_migration_status(migration_id, include_batches=False)
        logger.info(
            "migration_run_finished",
            migration_id=migration_id,
            status=status["status"],
            processed=status["processed_items"],
            total=status["total_items"],
        )
        return status

    def get_migration_status(
        self, migration_id: int, include_batches: bool = True
    ) -> dict[str, Any]:
        """Full status report of a migration."""
        migration = self.state.get_migration(migration_id)
        counts = self.state.batch_status_counts(migration_id)

        status = self._describe(migration)
        status["batch_counts"] = counts
        status["completed_with_failures"] = (
            migration.status == MIGRATION_COMPLETED and counts[BATCH_FAILED] > 0
        )
        status["summary"] = migration.summary
        if include_batches:
            status["batches"] = [
                self._describe_batch(batch) for batch in self.state.get_batches(migration_id)
            ]
        return status

    def list_migrations(self, status: str | None = None, limit: int | None = None) -> list[dict]:
        return [self._describe(m) for m in self.state.list_migrations(status=status, limit=limit)]

    @staticmethod
    def _describe(migration: Migration) -> dict[str, Any]:
        if migration.total_items:
            progress = round(migration.processed_items / migration.total_items * 100, 1)
        else:
            progress = 100.0 if migration.status == MIGRATION_COMPLETED else 0.0
        if migration.processed_items:
            success_rate = round(migration.successful_items / migration.processed_items * 100, 1)
        else:
            success_rate = 0.0

        return {
            "id": migration.id,
            "name": migration.name,
            "status": migration.status,
            "resource_kinds": migration.resource_kinds,
            "filters": migration.filters,
            "batch_size": migration.batch_size,
            "total_items": migration.total_items,
            "processed_items": migration.processed_items,
            "successful_items": migration.successful_items,
            "failed_items": migration.failed_items,
            "progress_percentage": progress,
            "success_rate": success_rate,
            "error_message": migration.error_message,
            "created_at": _iso(migration.created_at),
            "started_at": _iso(migration.started_at),
            "completed_at": _iso(migration.completed_at),
        }

    @staticmethod
    def _describe_batch(batch: MigrationBatch) -> dict[str, Any]:
        return {
            "id": batch.id,
            "resource_kind": batch.resource_kind,
            "batch_number": batch.batch_number,
            "page_index": batch.page_index,
            "page_size": batch.page_size,
            "status": batch.status,
            "items_requested": batch.items_requested,
            # Reported only; the stored count is never clamped
            "items_received": min(batch.items_received, batch.items_requested),
            "items_stored": batch.items_stored,
            "error_message": batch.error_message,
            "started_at": _iso(batch.started_at),
            "completed_at": _iso(batch.completed_at),
        }
