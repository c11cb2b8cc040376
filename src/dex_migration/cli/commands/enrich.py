"""
Enrichment commands.

Fetch full case and session detail for shallow placeholders, one record at
a time. Only one enrichment runs at once across all processes sharing the
state database.
"""

from typing import Any

import click

from dex_migration.cli.context import BridgeContext
from dex_migration.cli.decorators import (
    confirm_action,
    handle_errors,
    pass_context,
    requires_config,
)
from dex_migration.cli.utils import (
    echo_info,
    echo_success,
    echo_warning,
    format_count,
    print_stats,
    print_table,
    run_async,
)
from dex_migration.enrichment.shallow import generate_shallow_sessions
from dex_migration.resources import ENRICHABLE_KINDS
from dex_migration.utils.logging import get_logger

logger = get_logger(__name__)

KIND_ARGUMENT = click.argument(
    "resource_kind", type=click.Choice(list(ENRICHABLE_KINDS), case_sensitive=False)
)


def _report_run(resource_kind: str, stats: dict[str, Any], show_errors: int = 10) -> None:
    print_stats(
        {
            "total": stats["total"],
            "already_enriched": stats["already_enriched"],
            "newly_enriched": stats["newly_enriched"],
            "failed": stats["failed"],
        },
        title=f"Enrichment of {resource_kind}",
    )

    if stats["errors"]:
        print_table(
            "Failed Records",
            ["ID", "Error"],
            [[error["id"], error["error"]] for error in stats["errors"][:show_errors]],
        )
        if len(stats["errors"]) > show_errors:
            echo_warning(f"{len(stats['errors']) - show_errors} more failures in the log")

    if stats["paused"]:
        echo_warning(f"Enrichment of {resource_kind} paused; run 'enrich resume' to continue")
    else:
        echo_success(f"Enrichment of {resource_kind} finished")


@click.group(name="enrich")
def enrich() -> None:
    """Enrichment commands.

    Shallow cases are written by case migrations; shallow sessions are
    generated from the session ids listed on cases.
    """
    pass


@enrich.command(name="start")
@KIND_ARGUMENT
@pass_context
@requires_config
@handle_errors
def start(ctx: BridgeContext, resource_kind: str) -> None:
    """Enrich every shallow record of a kind that is not enriched yet."""
    echo_info(f"Enriching {resource_kind}...")
    stats = run_async(ctx, lambda: ctx.runner.enrich(resource_kind))
    _report_run(resource_kind, stats)


@enrich.command(name="pause")
@KIND_ARGUMENT
@pass_context
@requires_config
@handle_errors
def pause(ctx: BridgeContext, resource_kind: str) -> None:
    """Ask a running enrichment to stop after its current record."""
    if ctx.runner.pause(resource_kind):
        echo_success(f"Pause requested for {resource_kind} enrichment")
    else:
        echo_info(f"No {resource_kind} enrichment is running")


@enrich.command(name="resume")
@KIND_ARGUMENT
@pass_context
@requires_config
@handle_errors
def resume(ctx: BridgeContext, resource_kind: str) -> None:
    """Continue enrichment; records already enriched are skipped."""
    echo_info(f"Resuming {resource_kind} enrichment...")
    stats = run_async(ctx, lambda: ctx.runner.resume(resource_kind))
    _report_run(resource_kind, stats)


@enrich.command(name="restart")
@KIND_ARGUMENT
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@pass_context
@requires_config
@confirm_action("This deletes every enriched record of this kind. Continue?")
@handle_errors
def restart(ctx: BridgeContext, resource_kind: str, yes: bool) -> None:
    """Discard enriched records of a kind and enrich them all again."""
    stats = run_async(ctx, lambda: ctx.runner.restart(resource_kind))
    _report_run(resource_kind, stats)


@enrich.command(name="progress")
@KIND_ARGUMENT
@pass_context
@requires_config
@handle_errors
def progress(ctx: BridgeContext, resource_kind: str) -> None:
    """Show how many shallow records of a kind are enriched."""
    report = ctx.runner.get_progress(resource_kind)
    stats: dict[str, Any] = {
        "total": report["total"],
        "enriched": report["enriched"],
        "unenriched": report["unenriched"],
        "progress": f"{report['progress_percentage']}%",
        "completed": "yes" if report["is_completed"] else "no",
    }
    latest = report["latest_run"]
    if latest:
        stats["last_run"] = f"#{latest['id']} {latest['status']}"
        if latest["pause_requested"] and latest["status"] == "running":
            stats["last_run"] += " (pause requested)"
    print_stats(stats, title=f"Enrichment Progress: {resource_kind}")


@enrich.command(name="unenriched")
@KIND_ARGUMENT
@click.option("--limit", type=int, default=50, show_default=True, help="Maximum ids to print")
@pass_context
@requires_config
@handle_errors
def unenriched(ctx: BridgeContext, resource_kind: str, limit: int) -> None:
    """List ids of shallow records that have no enriched record."""
    ids = ctx.runner.get_unenriched_ids(resource_kind)
    if not ids:
        echo_success(f"All {resource_kind} are enriched")
        return

    for record_id in ids[:limit]:
        click.echo(record_id)
    if len(ids) > limit:
        echo_info(f"... and {format_count(len(ids) - limit)} more")


@enrich.command(name="shallow-sessions")
@pass_context
@requires_config
@handle_errors
def shallow_sessions(ctx: BridgeContext) -> None:
    """Create shallow session placeholders from the session ids on cases."""
    stats = generate_shallow_sessions(ctx.records)
    print_stats(
        {
            "source": stats["source"],
            "sessions_found": stats["total_sessions_found"],
            "newly_created": stats["newly_created"],
            "already_existed": stats["already_existed"],
            "errors": len(stats["errors"]),
        },
        title="Shallow Sessions",
    )
    if stats["errors"]:
        echo_warning(f"{len(stats['errors'])} sessions could not be stored; see the log")
    else:
        echo_success("Shallow sessions generated")
