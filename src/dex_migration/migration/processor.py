"""Processing of a single batch: fetch one page, store its items, report the outcome."""

import asyncio
from dataclasses import dataclass, field
from typing import Any

from dex_migration.client.source import SourceAdapter
from dex_migration.migration.models import BATCH_COMPLETED, BATCH_FAILED
from dex_migration.migration.progress import ProgressTracker
from dex_migration.migration.records import RecordStore
from dex_migration.migration.state import MigrationState
from dex_migration.normalize import extract_items
from dex_migration.resources import get_info
from dex_migration.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class BatchOutcome:
    batch_id: int
    status: str
    items_received: int = 0
    items_stored: int = 0
    item_errors: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None


class BatchProcessor:
    """
    Fetches a batch's page from the source and upserts every item.

    A failing item is logged and skipped; it never fails the batch. A failing
    or timed-out fetch fails the batch and hands it to the failure policy.
    """

    def __init__(
        self,
        state: MigrationState,
        records: RecordStore,
        source: SourceAdapter,
        tracker: ProgressTracker,
        timeout: float = 300.0,
    ):
        self.state = state
        self.records = records
        self.source = source
        self.tracker = tracker
        self.timeout = timeout

    async def process(self, batch_id: int) -> BatchOutcome:
        batch = self.state.mark_batch_started(batch_id)
        info = get_info(batch.resource_kind)
        filters = dict(batch.api_filters)

        try:
            payload = await asyncio.wait_for(
                self.source.search(
                    info.name,
                    filters,
                    page_index=batch.page_index,
                    page_size=batch.page_size,
                ),
                timeout=self.timeout,
            )
        except TimeoutError:
            message = f"Timed out after {self.timeout:g}s fetching page {batch.page_index}"
            return self._fail(batch, message)
        except Exception as e:
            return self._fail(batch, f"{type(e).__name__}: {e}")

        extracted = extract_items(payload, info)
        if extracted.shape is None and payload:
            logger.warning(
                "response_shape_unrecognized",
                batch_id=batch_id,
                resource_kind=info.name,
                payload_type=type(payload).__name__,
            )

        outcome = BatchOutcome(
            batch_id=batch_id, status=BATCH_COMPLETED, items_received=len(extracted.items)
        )
        for position, item in enumerate(extracted.items, start=1):
            try:
                self.records.upsert_migrated(info.name, item, batch_id=batch_id)
                outcome.items_stored += 1
            except Exception as e:
                outcome.item_errors.append({"position": position, "error": str(e)})
                logger.warning(
                    "item_store_failed",
                    batch_id=batch_id,
                    resource_kind=info.name,
                    position=position,
                    error_type=type(e).__name__,
                    error=str(e),
                )

        self.state.mark_batch_completed(batch_id, outcome.items_received, outcome.items_stored)
        self.tracker.on_batch_completed(batch.migration_id)
        return outcome

    def _fail(self, batch, message: str) -> BatchOutcome:
        self.state.mark_batch_failed(batch.id, message)
        self.tracker.on_batch_failed(batch.migration_id)
        return BatchOutcome(batch_id=batch.id, status=BATCH_FAILED, error=message)
