"""Bounded-window batch dispatch."""

import asyncio

from dex_migration.migration.models import MIGRATION_IN_PROGRESS
from dex_migration.migration.state import MigrationState
from dex_migration.utils.logging import get_logger

logger = get_logger(__name__)


class BatchDispatcher:
    """
    Feeds claimed batch ids into the work queue.

    ``fill`` opens the in-flight window; afterwards ``submit_next`` is called
    once per batch that reaches a terminal state, which keeps at most
    ``window`` batches in flight without any other bookkeeping.
    """

    def __init__(self, state: MigrationState, queue: asyncio.Queue, window: int):
        self.state = state
        self.queue = queue
        self.window = window

    def fill(self, migration_id: int, limit: int | None = None) -> list[int]:
        """Claim up to ``limit`` (default: the window) pending batches and enqueue them."""
        migration = self.state.get_migration(migration_id)
        if migration.status != MIGRATION_IN_PROGRESS:
            logger.debug(
                "dispatch_skipped", migration_id=migration_id, status=migration.status
            )
            return []

        claimed = self.state.claim_pending_batches(
            migration_id, self.window if limit is None else limit
        )
        for batch_id in claimed:
            self.queue.put_nowait(batch_id)

        if claimed:
            logger.debug("batches_dispatched", migration_id=migration_id, batch_ids=claimed)
        return claimed

    def submit_next(self, migration_id: int) -> int | None:
        """Replace one finished batch with the next pending one, if any."""
        claimed = self.fill(migration_id, limit=1)
        return claimed[0] if claimed else None
