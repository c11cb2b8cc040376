"""
Batch planning.

A migration is split into fixed-size pages per resource kind. The page
layout is decided once, when the migration is created, and never changes.
"""

import math
from dataclasses import dataclass, field
from typing import Any

from dex_migration.client.exceptions import MigrationConflictError, ValidationError
from dex_migration.client.source import SourceAdapter
from dex_migration.config import PerformanceConfig
from dex_migration.migration.models import Migration
from dex_migration.migration.state import MigrationState
from dex_migration.normalize import extract_total_count
from dex_migration.resources import resolve_kinds
from dex_migration.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class BatchDescriptor:
    """The immutable description of one page of one resource kind."""

    resource_kind: str
    batch_number: int
    page_index: int
    page_size: int
    items_requested: int
    api_filters: dict[str, Any] = field(default_factory=dict)


def plan_batches(
    resource_kind: str, total: int, batch_size: int, filters: dict[str, Any] | None = None
) -> list[BatchDescriptor]:
    """
    Split ``total`` items of a kind into 1-indexed pages of ``batch_size``.

    The last page requests only the remainder. A total of zero yields no
    batches.
    """
    if batch_size <= 0:
        raise ValidationError(f"batch_size must be positive, got {batch_size}")

    filters = dict(filters or {})
    batches = []
    for number in range(1, math.ceil(max(total, 0) / batch_size) + 1):
        requested = min(batch_size, total - (number - 1) * batch_size)
        batches.append(
            BatchDescriptor(
                resource_kind=resource_kind,
                batch_number=number,
                page_index=number,
                page_size=batch_size,
                items_requested=requested,
                api_filters={**filters, "page_index": number, "page_size": batch_size},
            )
        )
    return batches


class BatchPlanner:
    """Counts items at the source and lays out a migration's batches."""

    def __init__(
        self, state: MigrationState, source: SourceAdapter, performance: PerformanceConfig
    ):
        self.state = state
        self.source = source
        self.performance = performance

    async def count_items(self, resource_kind: str, filters: dict[str, Any]) -> int:
        """
        Ask the source for the number of items of a kind.

        Falls back to the configured estimate when the response carries no
        total. Source errors propagate.
        """
        payload = await self.source.search(resource_kind, filters, page_index=1, page_size=1)
        total = extract_total_count(payload)
        if total is None:
            logger.warning(
                "total_count_missing",
                resource_kind=resource_kind,
                fallback=self.performance.fallback_total_estimate,
            )
            return self.performance.fallback_total_estimate
        return total

    async def create_migration(
        self,
        name: str,
        resource_kinds: list[str],
        filters: dict[str, Any] | None = None,
        batch_size: int | None = None,
    ) -> Migration:
        """
        Create a pending migration and all of its batches.

        Raises:
            ResourceKindError: If a kind is unknown
            ValidationError: If the batch size is out of range or no kind is given
            MigrationConflictError: If an active migration covers one of the kinds
        """
        kinds = resolve_kinds(resource_kinds)
        if not kinds:
            raise ValidationError("At least one resource kind is required")

        if batch_size is None:
            batch_size = self.performance.default_batch_size
        if not 1 <= batch_size <= self.performance.max_batch_size:
            raise ValidationError(
                f"batch_size must be between 1 and {self.performance.max_batch_size}, "
                f"got {batch_size}"
            )

        conflicts = self.state.find_active_conflicts(kinds)
        if conflicts:
            raise MigrationConflictError(
                f"Migration {conflicts[0].id} ('{conflicts[0].name}') is already "
                f"{conflicts[0].status} for {', '.join(conflicts[0].resource_kinds)}"
            )

        filters = dict(filters or {})
        totals = {kind: await self.count_items(kind, filters) for kind in kinds}

        migration = self.state.create_migration(name, kinds, filters, batch_size)
        self.state.set_total_items(migration.id, sum(totals.values()))

        descriptors = [
            descriptor
            for kind in kinds
            for descriptor in plan_batches(kind, totals[kind], batch_size, filters)
        ]
        self.state.create_batches(migration.id, descriptors)

        logger.info(
            "migration_planned",
            migration_id=migration.id,
            totals=totals,
            batches=len(descriptors),
        )
        return self.state.get_migration(migration.id)
