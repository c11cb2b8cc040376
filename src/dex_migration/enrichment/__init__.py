"""
Enrichment module for DEX Bridge.

Turns shallow case and session placeholders into enriched records by
fetching full detail from DEX, one record at a time under a single-flight
lock.
"""

from dex_migration.enrichment.control import EnrichmentControl
from dex_migration.enrichment.lock import AdvisoryLockManager
from dex_migration.enrichment.runner import EnrichmentRunner
from dex_migration.enrichment.shallow import generate_shallow_sessions

__all__ = [
    "AdvisoryLockManager",
    "EnrichmentControl",
    "EnrichmentRunner",
    "generate_shallow_sessions",
]
