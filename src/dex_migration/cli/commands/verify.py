"""
Verification commands.

Re-fetch a random sample of local records from DEX and report fields that
no longer match.
"""

from typing import Any

import click

from dex_migration.cli.context import BridgeContext
from dex_migration.cli.decorators import handle_errors, pass_context, requires_config
from dex_migration.cli.utils import (
    echo_error,
    echo_success,
    echo_warning,
    print_stats,
    print_table,
    run_async,
)
from dex_migration.resources import ENRICHABLE_KINDS
from dex_migration.utils.logging import get_logger
from dex_migration.verification.sampler import (
    STATUS_DISCREPANCIES,
    STATUS_ERROR,
    STATUS_NO_DATA,
    STATUS_VERIFIED,
)

logger = get_logger(__name__)


def _print_discrepancies(resource_kind: str, records: list[dict[str, Any]]) -> None:
    rows = [
        [record["id"], d["field"], d["local_value"], d["source_value"]]
        for record in records
        for d in record.get("discrepancies", [])
    ]
    rows += [
        [record["id"], "-", "-", "missing in DEX"]
        for record in records
        if record["status"] == "missing"
    ]
    if rows:
        print_table(f"Discrepancies: {resource_kind}", ["ID", "Field", "Local", "DEX"], rows)


def _finish(status: str) -> None:
    if status == STATUS_VERIFIED:
        echo_success("All sampled records match DEX")
    elif status == STATUS_NO_DATA:
        echo_warning("Nothing to verify")
    elif status == STATUS_DISCREPANCIES:
        echo_warning("Discrepancies found")
        raise click.exceptions.Exit(1)
    elif status == STATUS_ERROR:
        echo_error("Verification could not complete for some records")
        raise click.exceptions.Exit(1)


@click.group(name="verify")
def verify() -> None:
    """Verification commands."""
    pass


@verify.command(name="run")
@click.argument("migration_id", type=int)
@click.option("--sample-size", type=int, default=None, help="Records sampled per kind")
@pass_context
@requires_config
@handle_errors
def run(ctx: BridgeContext, migration_id: int, sample_size: int | None) -> None:
    """Verify a sample of each kind a migration produced.

    Only records from completed batches are sampled.
    """
    report = run_async(ctx, lambda: ctx.sampler.verify_migration(migration_id, sample_size))

    print_table(
        f"Verification of migration {migration_id}",
        ["Kind", "Status", "Sampled", "Verified", "Discrepancy", "Missing", "Error", "Rate"],
        [
            [
                kind,
                result["status"],
                result.get("sampled", 0),
                result.get("verified", 0),
                result.get("discrepancy", 0),
                result.get("missing", 0),
                result.get("error", 0),
                f"{result.get('success_rate', 0.0)}%",
            ]
            for kind, result in report["resource_kinds"].items()
        ],
    )
    for kind, result in report["resource_kinds"].items():
        if result.get("error_message"):
            echo_error(f"{kind}: {result['error_message']}")
        _print_discrepancies(kind, result["records"])

    summary = report["summary"]
    print_stats(
        {
            "verified": summary["total_verified"],
            "discrepancies": summary["total_discrepancies"],
            "missing": summary["total_missing"],
            "errors": summary["total_errors"],
            "success_rate": f"{summary['success_rate']}%",
        },
        title="Summary",
    )
    _finish(summary["status"])


@verify.command(name="quick")
@click.argument("migration_id", type=int)
@pass_context
@requires_config
@handle_errors
def quick(ctx: BridgeContext, migration_id: int) -> None:
    """Small-sample check of a migration."""
    report = run_async(ctx, lambda: ctx.sampler.quick_verify(migration_id))
    print_table(
        f"Quick verification of migration {migration_id}",
        ["Kind", "Status", "Verified", "Checked", "Rate"],
        [
            [
                kind,
                result["status"],
                result["verified"],
                result["total_checked"],
                f"{result['success_rate']}%",
            ]
            for kind, result in report["resource_kinds"].items()
        ],
    )
    _finish(report["status"])


@verify.command(name="enriched")
@click.argument("resource_kind", type=click.Choice(list(ENRICHABLE_KINDS), case_sensitive=False))
@click.option("--sample-size", type=int, default=None, help="Records to sample")
@pass_context
@requires_config
@handle_errors
def enriched(ctx: BridgeContext, resource_kind: str, sample_size: int | None) -> None:
    """Verify a sample of enriched cases or sessions."""
    result = run_async(ctx, lambda: ctx.sampler.verify_enriched(resource_kind, sample_size))
    print_stats(
        {
            "total_records": result["total_records"],
            "sampled": result["sampled"],
            "verified": result["verified"],
            "discrepancies": result["discrepancy"],
            "missing": result["missing"],
            "errors": result["error"],
            "success_rate": f"{result['success_rate']}%",
        },
        title=f"Verification of enriched {resource_kind}",
    )
    _print_discrepancies(resource_kind, result["records"])
    _finish(result["status"])
