"""
Migration progress tracking and failure policy.

Counters are never incremented in place. After every batch outcome they are
recomputed from the batches, so completion order and retries cannot make
them drift.
"""

from typing import Any

from dex_migration.migration.dispatcher import BatchDispatcher
from dex_migration.migration.models import BATCH_FAILED, Migration
from dex_migration.migration.state import MigrationState
from dex_migration.utils.logging import get_logger, log_migration_progress

logger = get_logger(__name__)


class ProgressTracker:
    """Reacts to batch outcomes: recompute counters, then finish, fail or dispatch more."""

    def __init__(
        self,
        state: MigrationState,
        dispatcher: BatchDispatcher,
        failure_threshold: float = 0.5,
    ):
        self.state = state
        self.dispatcher = dispatcher
        self.failure_threshold = failure_threshold

    def on_batch_completed(self, migration_id: int) -> Migration:
        migration = self._refresh(migration_id)
        self._finish_or_continue(migration_id)
        return self.state.get_migration(migration_id)

    def on_batch_failed(self, migration_id: int) -> Migration:
        """Apply the cascading failure policy after a batch failed."""
        self._refresh(migration_id)

        counts = self.state.batch_status_counts(migration_id)
        if counts["total"] and counts[BATCH_FAILED] > self.failure_threshold * counts["total"]:
            message = (
                f"{counts[BATCH_FAILED]} of {counts['total']} batches failed, "
                f"above the {self.failure_threshold:.0%} failure threshold"
            )
            self.state.fail_migration(
                migration_id, message, summary=self.build_summary(migration_id)
            )
        else:
            self._finish_or_continue(migration_id)

        return self.state.get_migration(migration_id)

    def build_summary(self, migration_id: int) -> dict[str, Any]:
        """Per-kind batch counts and items migrated, as frozen on the migration."""
        breakdown = self.state.batch_breakdown(migration_id)
        failed_batches = sum(kind[BATCH_FAILED] for kind in breakdown.values())
        return {
            "resource_kinds": breakdown,
            "total_batches": sum(kind["total_batches"] for kind in breakdown.values()),
            "failed_batches": failed_batches,
            "items_migrated": sum(kind["items_migrated"] for kind in breakdown.values()),
            "completed_with_failures": failed_batches > 0,
        }

    def _refresh(self, migration_id: int) -> Migration:
        migration = self.state.recompute_counters(migration_id)
        log_migration_progress(
            logger,
            migration_id,
            processed=migration.processed_items,
            total=migration.total_items,
            successful=migration.successful_items,
            failed=migration.failed_items,
        )
        return migration

    def _finish_or_continue(self, migration_id: int) -> None:
        if self.state.all_batches_terminal(migration_id):
            self.state.complete_migration(migration_id, self.build_summary(migration_id))
        else:
            self.dispatcher.submit_next(migration_id)
