"""Generation of shallow session placeholders from case data."""

from typing import Any

from dex_migration.client.exceptions import MigrationError
from dex_migration.migration.records import RecordStore
from dex_migration.utils.logging import get_logger

logger = get_logger(__name__)


def generate_shallow_sessions(records: RecordStore) -> dict[str, Any]:
    """
    Create a shallow session for every ``(case_id, session_id)`` pair listed on cases.

    Migrated cases are used when there are any, otherwise enriched cases.
    Existing placeholders are left alone, so the operation is repeatable.

    Raises:
        MigrationError: If there is no case data to derive sessions from
    """
    cases = records.migrated_cases()
    source = "migrated_cases"
    if not cases:
        cases = records.enriched_records("cases")
        source = "enriched_cases"
    if not cases:
        raise MigrationError(
            "No case data found. Migrate or enrich cases before generating shallow sessions."
        )

    stats: dict[str, Any] = {
        "total_sessions_found": 0,
        "newly_created": 0,
        "already_existed": 0,
        "source": source,
        "errors": [],
    }

    for case in cases:
        for session_id in case.session_ids or []:
            stats["total_sessions_found"] += 1
            try:
                if records.upsert_shallow_session(case.case_id, session_id):
                    stats["newly_created"] += 1
                else:
                    stats["already_existed"] += 1
            except Exception as e:
                stats["errors"].append(
                    {"case_id": case.case_id, "session_id": session_id, "error": str(e)}
                )
                logger.warning(
                    "shallow_session_failed",
                    case_id=case.case_id,
                    session_id=session_id,
                    error=str(e),
                )

    logger.info(
        "shallow_sessions_generated",
        source=source,
        found=stats["total_sessions_found"],
        created=stats["newly_created"],
        existing=stats["already_existed"],
    )
    return stats
