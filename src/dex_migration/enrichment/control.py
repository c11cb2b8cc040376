"""Enrichment run control records.

Each run gets its own row. Pausing sets ``pause_requested`` on the running
row of a kind; the runner polls its own row between records, so a pause can
only ever stop the run it was aimed at.
"""

from typing import Any

from sqlalchemy import update

from dex_migration.migration.database import get_session
from dex_migration.migration.models import (
    RUN_COMPLETED,
    RUN_FAILED,
    RUN_PAUSED,
    RUN_RUNNING,
    EnrichmentRun,
    utcnow,
)
from dex_migration.utils.logging import get_logger

logger = get_logger(__name__)


class EnrichmentControl:
    """Creates, polls and finishes enrichment run records."""

    def __init__(self, database_url: str):
        self.database_url = database_url

    def start_run(self, resource_kind: str) -> int:
        """Create a running, unpaused run record and return its id."""
        with get_session(self.database_url) as session:
            # A run left "running" by a crash cannot still be running: the lock is single-flight
            session.execute(
                update(EnrichmentRun)
                .where(
                    EnrichmentRun.resource_kind == resource_kind,
                    EnrichmentRun.status == RUN_RUNNING,
                )
                .values(status=RUN_FAILED, error_message="Superseded by a new run")
            )
            run = EnrichmentRun(
                resource_kind=resource_kind,
                status=RUN_RUNNING,
                pause_requested=False,
                errors=[],
                started_at=utcnow(),
            )
            session.add(run)
            session.flush()
            logger.info("enrichment_run_started", run_id=run.id, resource_kind=resource_kind)
            return run.id

    def is_pause_requested(self, run_id: int) -> bool:
        with get_session(self.database_url) as session:
            run = session.get(EnrichmentRun, run_id)
            return bool(run and run.pause_requested)

    def request_pause(self, resource_kind: str) -> bool:
        """
        Ask the running run of a kind to stop after its current record.

        Returns:
            False if no run of that kind is running
        """
        with get_session(self.database_url) as session:
            result = session.execute(
                update(EnrichmentRun)
                .where(
                    EnrichmentRun.resource_kind == resource_kind,
                    EnrichmentRun.status == RUN_RUNNING,
                )
                .values(pause_requested=True)
            )
            requested = result.rowcount > 0
        logger.info("enrichment_pause_requested", resource_kind=resource_kind, accepted=requested)
        return requested

    def finish_run(self, run_id: int, stats: dict[str, Any]) -> None:
        """Store final statistics; a paused run ends as ``paused``."""
        with get_session(self.database_url) as session:
            run = session.get(EnrichmentRun, run_id)
            if run is None:
                return
            run.status = RUN_PAUSED if stats.get("paused") else RUN_COMPLETED
            run.total = stats["total"]
            run.already_enriched = stats["already_enriched"]
            run.newly_enriched = stats["newly_enriched"]
            run.failed = stats["failed"]
            run.errors = list(stats["errors"])
            run.completed_at = utcnow()

    def fail_run(self, run_id: int, error_message: str) -> None:
        with get_session(self.database_url) as session:
            run = session.get(EnrichmentRun, run_id)
            if run is None:
                return
            run.status = RUN_FAILED
            run.error_message = error_message
            run.completed_at = utcnow()

    def latest_run(self, resource_kind: str) -> EnrichmentRun | None:
        with get_session(self.database_url) as session:
            return (
                session.query(EnrichmentRun)
                .filter(EnrichmentRun.resource_kind == resource_kind)
                .order_by(EnrichmentRun.id.desc())
                .first()
            )
