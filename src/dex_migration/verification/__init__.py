"""
Verification module for DEX Bridge.

Samples migrated and enriched records, re-fetches them from DEX and reports
field-level discrepancies.
"""

from dex_migration.verification.compare import FIELD_PAIRS, compare_record, normalize_value
from dex_migration.verification.sampler import VerificationSampler

__all__ = [
    "FIELD_PAIRS",
    "compare_record",
    "normalize_value",
    "VerificationSampler",
]
