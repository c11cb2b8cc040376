"""
Sampling verification of migrated and enriched records.

A random sample of local records is re-fetched from DEX and compared field
by field. Only records produced by completed batches are eligible, so a
migration can be verified while other batches are still running.
"""

import random
from typing import Any

from dex_migration.client.source import SourceAdapter
from dex_migration.config import DexBridgeConfig
from dex_migration.migration.models import BATCH_COMPLETED
from dex_migration.migration.records import RecordStore, extract_parent_case_id
from dex_migration.migration.state import MigrationState
from dex_migration.resources import get_enrichable_info, get_info
from dex_migration.utils.logging import get_logger
from dex_migration.verification.compare import compare_record

logger = get_logger(__name__)

RECORD_MISSING = "missing"
RECORD_VERIFIED = "verified"
RECORD_DISCREPANCY = "discrepancy"
RECORD_ERROR = "error"

STATUS_ERROR = "error"
STATUS_DISCREPANCIES = "discrepancies_found"
STATUS_VERIFIED = "verified"
STATUS_NO_DATA = "no_data"


def _tally(results: list[dict[str, Any]]) -> dict[str, int]:
    counts = {RECORD_VERIFIED: 0, RECORD_DISCREPANCY: 0, RECORD_MISSING: 0, RECORD_ERROR: 0}
    for result in results:
        counts[result["status"]] += 1
    return counts


def success_rate(verified: int, discrepancies: int, missing: int) -> float:
    """Verified share of the records that could be compared, as a percentage."""
    checked = verified + discrepancies + missing
    return round(verified / checked * 100, 2) if checked else 0.0


def overall_status(verified: int, discrepancies: int, missing: int, errors: int) -> str:
    if errors:
        return STATUS_ERROR
    if discrepancies or missing:
        return STATUS_DISCREPANCIES
    if verified:
        return STATUS_VERIFIED
    return STATUS_NO_DATA


class VerificationSampler:
    """Re-fetches sampled records from the source and reconciles them."""

    def __init__(
        self,
        config: DexBridgeConfig,
        source: SourceAdapter,
        state: MigrationState,
        records: RecordStore,
        rng: random.Random | None = None,
    ):
        self.config = config
        self.source = source
        self.state = state
        self.records = records
        self.rng = rng or random.Random()

    async def verify_migration(
        self, migration_id: int, sample_size: int | None = None
    ) -> dict[str, Any]:
        """
        Verify every resource kind of a migration.

        Returns:
            Report with per-kind results and an overall summary
        """
        migration = self.state.get_migration(migration_id)
        sample_size = sample_size or self.config.verification.sample_size

        kinds: dict[str, dict[str, Any]] = {}
        for kind in migration.resource_kinds:
            try:
                kinds[kind] = await self.verify_resource_kind(migration_id, kind, sample_size)
            except Exception as e:
                logger.error(
                    "kind_verification_failed",
                    migration_id=migration_id,
                    resource_kind=kind,
                    error=str(e),
                )
                kinds[kind] = {"status": STATUS_ERROR, "error_message": str(e), "records": []}

        report = {
            "migration_id": migration_id,
            "migration_name": migration.name,
            "resource_kinds": kinds,
            "summary": self.summarize(kinds),
        }
        logger.info(
            "migration_verified",
            migration_id=migration_id,
            status=report["summary"]["status"],
            success_rate=report["summary"]["success_rate"],
        )
        return report

    async def verify_resource_kind(
        self, migration_id: int, resource_kind: str, sample_size: int
    ) -> dict[str, Any]:
        """Sample and verify the records one kind's completed batches produced."""
        info = get_info(resource_kind)
        batch_ids = [
            batch.id
            for batch in self.state.get_batches(
                migration_id, status=BATCH_COMPLETED, resource_kind=info.name
            )
        ]
        candidates = self.records.records_for_batches(info.name, batch_ids)
        if not candidates:
            return {
                "status": STATUS_NO_DATA,
                "total_records": 0,
                "sampled": 0,
                "records": [],
                **_tally([]),
                "success_rate": 0.0,
            }

        sample = self.rng.sample(candidates, min(sample_size, len(candidates)))
        results = [await self.verify_record(info.name, record) for record in sample]
        counts = _tally(results)
        return {
            "status": overall_status(
                counts[RECORD_VERIFIED],
                counts[RECORD_DISCREPANCY],
                counts[RECORD_MISSING],
                counts[RECORD_ERROR],
            ),
            "total_records": len(candidates),
            "sampled": len(sample),
            "records": results,
            **counts,
            "success_rate": success_rate(
                counts[RECORD_VERIFIED], counts[RECORD_DISCREPANCY], counts[RECORD_MISSING]
            ),
        }

    async def verify_record(
        self, resource_kind: str, record, record_table: str = "migrated"
    ) -> dict[str, Any]:
        """
        Re-fetch one record and compare it.

        The outcome is written back onto the record. Exceptions become an
        ``error`` result instead of propagating.
        """
        info = get_info(resource_kind)
        record_id = getattr(record, info.id_field)
        record_set = info.name if record_table == "migrated" else f"enriched_{info.name}"

        try:
            parent_ids = []
            if info.parent_id_field:
                parent = getattr(record, info.parent_id_field, None) or extract_parent_case_id(
                    record.api_response or {}
                )
                if parent:
                    parent_ids.append(parent)

            source_data = await self.source.fetch_by_id(info.name, record_id, *parent_ids)
            if source_data is None:
                self.records.update_verification(
                    record_table, info.name, record_id, False, "Record not found in source"
                )
                return {"id": record_id, "status": RECORD_MISSING}

            discrepancies = compare_record(record, source_data, record_set)
            if discrepancies:
                fields = ", ".join(d["field"] for d in discrepancies)
                self.records.update_verification(
                    record_table, info.name, record_id, False, f"Mismatched fields: {fields}"
                )
                return {
                    "id": record_id,
                    "status": RECORD_DISCREPANCY,
                    "discrepancies": discrepancies,
                }

            self.records.update_verification(record_table, info.name, record_id, True)
            return {"id": record_id, "status": RECORD_VERIFIED}

        except Exception as e:
            logger.warning(
                "record_verification_error",
                resource_kind=info.name,
                record_id=record_id,
                error_type=type(e).__name__,
                error=str(e),
            )
            return {"id": record_id, "status": RECORD_ERROR, "error": str(e)}

    async def quick_verify(
        self, migration_id: int, sample_size: int | None = None
    ) -> dict[str, Any]:
        """Smaller sample, per-kind counts only."""
        sample_size = sample_size or self.config.verification.quick_sample_size
        report = await self.verify_migration(migration_id, sample_size)
        return {
            "migration_id": migration_id,
            "resource_kinds": {
                kind: {
                    "status": result["status"],
                    "verified": result.get(RECORD_VERIFIED, 0),
                    "total_checked": result.get("sampled", 0),
                    "success_rate": result.get("success_rate", 0.0),
                }
                for kind, result in report["resource_kinds"].items()
            },
            "status": report["summary"]["status"],
        }

    async def verify_enriched(
        self, resource_kind: str, sample_size: int | None = None
    ) -> dict[str, Any]:
        """Sample enriched records of a kind and reconcile them with the source."""
        info = get_enrichable_info(resource_kind)
        sample_size = sample_size or self.config.verification.sample_size
        candidates = self.records.enriched_records(info.name)
        if not candidates:
            result: dict[str, Any] = {"status": STATUS_NO_DATA, "records": [], **_tally([])}
        else:
            sample = self.rng.sample(candidates, min(sample_size, len(candidates)))
            results = [
                await self.verify_record(info.name, record, record_table="enriched")
                for record in sample
            ]
            counts = _tally(results)
            result = {
                "status": overall_status(
                    counts[RECORD_VERIFIED],
                    counts[RECORD_DISCREPANCY],
                    counts[RECORD_MISSING],
                    counts[RECORD_ERROR],
                ),
                "records": results,
                **counts,
            }

        result["resource_kind"] = info.name
        result["total_records"] = len(candidates)
        result["sampled"] = len(result["records"])
        result["success_rate"] = success_rate(
            result[RECORD_VERIFIED], result[RECORD_DISCREPANCY], result[RECORD_MISSING]
        )
        return result

    @staticmethod
    def summarize(kinds: dict[str, dict[str, Any]]) -> dict[str, Any]:
        """Aggregate per-kind results into the report summary."""
        verified = sum(result.get(RECORD_VERIFIED, 0) for result in kinds.values())
        discrepancies = sum(result.get(RECORD_DISCREPANCY, 0) for result in kinds.values())
        missing = sum(result.get(RECORD_MISSING, 0) for result in kinds.values())
        errors = sum(result.get(RECORD_ERROR, 0) for result in kinds.values())
        errors += sum(1 for result in kinds.values() if result.get("error_message"))

        return {
            "total_verified": verified,
            "total_discrepancies": discrepancies,
            "total_missing": missing,
            "total_errors": errors,
            "success_rate": success_rate(verified, discrepancies, missing),
            "status": overall_status(verified, discrepancies, missing, errors),
        }
