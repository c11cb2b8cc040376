"""
Enrichment of shallow records with full detail from DEX.

Records are fetched one at a time. A bad record is counted and skipped, so
it never costs the progress made on the others, and the pause flag is
polled between records, so a pause takes effect after the current fetch.
"""

from typing import Any

from dex_migration.client.exceptions import EnrichmentError, EnrichmentInProgressError
from dex_migration.client.source import SourceAdapter
from dex_migration.config import DexBridgeConfig
from dex_migration.enrichment.control import EnrichmentControl
from dex_migration.enrichment.lock import AdvisoryLockManager
from dex_migration.migration.records import RecordStore
from dex_migration.resources import ResourceKindInfo, get_enrichable_info
from dex_migration.utils.logging import get_logger

logger = get_logger(__name__)


def _empty_stats() -> dict[str, Any]:
    return {
        "total": 0,
        "already_enriched": 0,
        "newly_enriched": 0,
        "failed": 0,
        "errors": [],
        "paused": False,
    }


class EnrichmentRunner:
    """Single-flight, pausable enrichment of shallow cases or sessions."""

    def __init__(self, config: DexBridgeConfig, source: SourceAdapter, records: RecordStore):
        self.config = config
        self.source = source
        self.records = records
        self.control = EnrichmentControl(records.database_url)
        self.locks = AdvisoryLockManager(records.database_url)

    async def enrich(self, resource_kind: str) -> dict[str, Any]:
        """
        Enrich every shallow record of a kind that has no enriched record yet.

        Returns:
            ``{total, already_enriched, newly_enriched, failed, errors, paused}``

        Raises:
            EnrichmentInProgressError: If another run holds the enrichment lock
            ResourceKindError: If the kind cannot be enriched
        """
        info = get_enrichable_info(resource_kind)
        settings = self.config.enrichment

        with self.locks.hold(settings.lock_name, settings.lock_ttl):
            run_id = self.control.start_run(info.name)
            try:
                stats = await self._enrich_all(info, run_id)
            except Exception as e:
                self.control.fail_run(run_id, str(e))
                raise
            self.control.finish_run(run_id, stats)

        logger.info(
            "enrichment_finished",
            resource_kind=info.name,
            run_id=run_id,
            total=stats["total"],
            already_enriched=stats["already_enriched"],
            newly_enriched=stats["newly_enriched"],
            failed=stats["failed"],
            paused=stats["paused"],
        )
        return stats

    async def _enrich_all(self, info: ResourceKindInfo, run_id: int) -> dict[str, Any]:
        shallow_records = self.records.shallow_records(info.name)
        stats = _empty_stats()
        stats["total"] = len(shallow_records)
        interval = self.config.enrichment.progress_log_interval

        for position, shallow in enumerate(shallow_records, start=1):
            if self.control.is_pause_requested(run_id):
                stats["paused"] = True
                logger.info(
                    "enrichment_paused",
                    resource_kind=info.name,
                    run_id=run_id,
                    processed=position - 1,
                )
                break

            record_id = getattr(shallow, info.id_field)
            if self.records.is_enriched(info.name, record_id):
                stats["already_enriched"] += 1
                continue

            try:
                await self._enrich_one(info, shallow)
                stats["newly_enriched"] += 1
            except Exception as e:
                stats["failed"] += 1
                stats["errors"].append({"id": record_id, "error": str(e)})
                logger.warning(
                    "record_enrichment_failed",
                    resource_kind=info.name,
                    record_id=record_id,
                    error_type=type(e).__name__,
                    error=str(e),
                )

            if stats["newly_enriched"] and stats["newly_enriched"] % interval == 0:
                logger.info(
                    "enrichment_progress",
                    resource_kind=info.name,
                    position=position,
                    total=stats["total"],
                    newly_enriched=stats["newly_enriched"],
                )

        return stats

    async def _enrich_one(self, info: ResourceKindInfo, shallow) -> None:
        if info.name == "cases":
            data = await self.source.fetch_by_id("cases", shallow.case_id)
            if data is None:
                raise EnrichmentError(f"No detail returned for case {shallow.case_id}")
            self.records.upsert_enriched_case(shallow.id, shallow.case_id, data)
        else:
            data = await self.source.fetch_by_id("sessions", shallow.session_id, shallow.case_id)
            if data is None:
                raise EnrichmentError(f"No detail returned for session {shallow.session_id}")
            self.records.upsert_enriched_session(
                shallow.id, shallow.case_id, shallow.session_id, data
            )

    def pause(self, resource_kind: str) -> bool:
        """Ask the running enrichment of a kind to stop after its current record."""
        return self.control.request_pause(get_enrichable_info(resource_kind).name)

    async def resume(self, resource_kind: str) -> dict[str, Any]:
        """Start a fresh run; already-enriched records are skipped without a fetch."""
        return await self.enrich(resource_kind)

    async def restart(self, resource_kind: str) -> dict[str, Any]:
        """Discard the kind's enriched records and enrich everything again."""
        info = get_enrichable_info(resource_kind)
        settings = self.config.enrichment
        if self.locks.is_locked(settings.lock_name):
            raise EnrichmentInProgressError(
                f"Another enrichment run holds the '{settings.lock_name}' lock"
            )
        self.records.delete_enriched(info.name)
        return await self.enrich(info.name)

    def get_progress(self, resource_kind: str) -> dict[str, Any]:
        info = get_enrichable_info(resource_kind)
        total = self.records.count_shallow(info.name)
        enriched = self.records.count_enriched(info.name)
        latest = self.control.latest_run(info.name)
        return {
            "resource_kind": info.name,
            "total": total,
            "enriched": enriched,
            "unenriched": max(total - enriched, 0),
            "progress_percentage": round(enriched / total * 100, 2) if total else 0.0,
            "is_completed": total > 0 and enriched >= total,
            "latest_run": None
            if latest is None
            else {
                "id": latest.id,
                "status": latest.status,
                "pause_requested": latest.pause_requested,
                "newly_enriched": latest.newly_enriched,
                "failed": latest.failed,
                "started_at": latest.started_at.isoformat() if latest.started_at else None,
                "completed_at": latest.completed_at.isoformat() if latest.completed_at else None,
            },
        }

    def get_unenriched_ids(self, resource_kind: str) -> list[str]:
        """External ids of shallow records that have no enriched record."""
        info = get_enrichable_info(resource_kind)
        enriched = self.records.enriched_ids(info.name)
        return [
            getattr(shallow, info.id_field)
            for shallow in self.records.shallow_records(info.name)
            if getattr(shallow, info.id_field) not in enriched
        ]
