"""
Migration commands.

Create, run and inspect migrations of DEX clients, cases and sessions into
the local store.
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
    elapsed,
    format_count,
    print_stats,
    print_table,
    run_async,
)
from dex_migration.client.exceptions import ValidationError
from dex_migration.migration.models import (
    MIGRATION_COMPLETED,
    MIGRATION_FAILED,
    MIGRATION_STATUSES,
)
from dex_migration.utils.logging import get_logger

logger = get_logger(__name__)


def parse_filters(values: tuple[str, ...]) -> dict[str, Any]:
    """Turn repeated ``KEY=VALUE`` options into a filter dict.

    ``true``/``false`` become booleans and digit-only values integers; all
    other values are passed to DEX as strings.
    """
    filters: dict[str, Any] = {}
    for item in values:
        key, sep, value = item.partition("=")
        key = key.strip()
        if not sep or not key:
            raise ValidationError(f"Filter must look like KEY=VALUE, got {item!r}")
        value = value.strip()
        if value.lower() in ("true", "false"):
            filters[key] = value.lower() == "true"
        elif value.isdigit():
            filters[key] = int(value)
        else:
            filters[key] = value
    return filters


def _show_status(status: dict[str, Any], show_batches: bool = False) -> None:
    click.echo()
    print_stats(
        {
            "migration": f"#{status['id']} {status['name']}",
            "status": status["status"],
            "resource_kinds": ", ".join(status["resource_kinds"]),
            "total_items": status["total_items"],
            "processed_items": status["processed_items"],
            "successful_items": status["successful_items"],
            "failed_items": status["failed_items"],
            "progress": f"{status['progress_percentage']}%",
            "success_rate": f"{status['success_rate']}%",
            "duration": elapsed(status["started_at"], status["completed_at"]),
        },
        title="Migration Status",
    )

    counts = status.get("batch_counts")
    if counts:
        print_table(
            "Batches",
            ["Pending", "Processing", "Completed", "Failed", "Cancelled", "Total"],
            [
                [
                    counts["pending"],
                    counts["processing"],
                    counts["completed"],
                    counts["failed"],
                    counts["cancelled"],
                    counts["total"],
                ]
            ],
        )

    if show_batches and status.get("batches"):
        print_table(
            "Batch Detail",
            ["ID", "Kind", "#", "Status", "Requested", "Received", "Stored", "Error"],
            [
                [
                    batch["id"],
                    batch["resource_kind"],
                    batch["batch_number"],
                    batch["status"],
                    batch["items_requested"],
                    batch["items_received"],
                    batch["items_stored"],
                    batch["error_message"],
                ]
                for batch in status["batches"]
            ],
        )

    if status["error_message"]:
        echo_warning(status["error_message"])
    if status.get("completed_with_failures"):
        echo_warning("Completed with failed batches; run 'migrate retry' to re-run them")


def _report_outcome(status: dict[str, Any]) -> None:
    _show_status(status)
    if status["status"] == MIGRATION_COMPLETED and not status.get("completed_with_failures"):
        echo_success(f"Migration {status['id']} completed")
    elif status["status"] == MIGRATION_FAILED:
        raise click.exceptions.Exit(1)


@click.group(name="migrate")
def migrate() -> None:
    """Migration commands.

    Records are fetched from DEX page by page, each page is a batch, and a
    bounded number of batches run at once.
    """
    pass


@migrate.command(name="create")
@click.argument("resource_kinds", nargs=-1, required=True)
@click.option("--name", "-n", default=None, help="Migration name (defaults to the kinds)")
@click.option(
    "--filter",
    "-f",
    "filters",
    multiple=True,
    metavar="KEY=VALUE",
    help="Search filter, e.g. created_date_from=2024-01-01 (repeatable)",
)
@click.option("--batch-size", type=int, default=None, help="Records per batch")
@pass_context
@requires_config
@handle_errors
def create(
    ctx: BridgeContext,
    resource_kinds: tuple[str, ...],
    name: str | None,
    filters: tuple[str, ...],
    batch_size: int | None,
) -> None:
    """Plan a migration without starting it.

    Examples:

        dex-bridge migrate create clients cases --batch-size 200
    """
    parsed = parse_filters(filters)
    migration_name = name or "+".join(resource_kinds)

    migration_id = run_async(
        ctx,
        lambda: ctx.coordinator.create_migration(
            migration_name, list(resource_kinds), parsed, batch_size
        ),
    )
    status = ctx.coordinator.get_migration_status(migration_id, include_batches=False)
    echo_success(
        f"Created migration {migration_id} with {format_count(status['batch_counts']['total'])} "
        f"batches for {format_count(status['total_items'])} records"
    )


@migrate.command(name="start")
@click.argument("migration_id", type=int)
@pass_context
@requires_config
@handle_errors
def start(ctx: BridgeContext, migration_id: int) -> None:
    """Start a pending migration and wait for it to finish."""
    echo_info(f"Starting migration {migration_id}...")
    status = run_async(ctx, lambda: ctx.coordinator.start_migration(migration_id))
    _report_outcome(status)


@migrate.command(name="run")
@click.argument("resource_kinds", nargs=-1, required=True)
@click.option("--name", "-n", default=None, help="Migration name (defaults to the kinds)")
@click.option(
    "--filter",
    "-f",
    "filters",
    multiple=True,
    metavar="KEY=VALUE",
    help="Search filter (repeatable)",
)
@click.option("--batch-size", type=int, default=None, help="Records per batch")
@pass_context
@requires_config
@handle_errors
def run(
    ctx: BridgeContext,
    resource_kinds: tuple[str, ...],
    name: str | None,
    filters: tuple[str, ...],
    batch_size: int | None,
) -> None:
    """Create a migration and start it straight away.

    Examples:

        dex-bridge migrate run sessions -f created_date_from=2024-07-01
    """
    parsed = parse_filters(filters)
    migration_name = name or "+".join(resource_kinds)

    async def _create_and_start() -> dict[str, Any]:
        coordinator = ctx.coordinator
        migration_id = await coordinator.create_migration(
            migration_name, list(resource_kinds), parsed, batch_size
        )
        echo_info(f"Created migration {migration_id}, starting...")
        return await coordinator.start_migration(migration_id)

    _report_outcome(run_async(ctx, _create_and_start))


@migrate.command(name="cancel")
@click.argument("migration_id", type=int)
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@pass_context
@requires_config
@confirm_action("Cancel this migration? Pending batches will not run.")
@handle_errors
def cancel(ctx: BridgeContext, migration_id: int, yes: bool) -> None:
    """Cancel a migration. Batches already processing finish normally."""
    result = ctx.coordinator.cancel_migration(migration_id)
    echo_success(
        f"Migration {migration_id} cancelled, "
        f"{format_count(result['batches_cancelled'])} pending batches dropped"
    )


@migrate.command(name="retry")
@click.argument("migration_id", type=int)
@pass_context
@requires_config
@handle_errors
def retry(ctx: BridgeContext, migration_id: int) -> None:
    """Re-run the failed batches of a migration."""
    echo_info(f"Retrying failed batches of migration {migration_id}...")
    status = run_async(ctx, lambda: ctx.coordinator.retry_migration(migration_id))
    _report_outcome(status)


@migrate.command(name="restart")
@click.argument("migration_id", type=int)
@pass_context
@requires_config
@handle_errors
def restart(ctx: BridgeContext, migration_id: int) -> None:
    """Resume a migration that was interrupted mid-run.

    Batches left processing by a stopped process are put back in the queue.
    """
    echo_info(f"Restarting migration {migration_id}...")
    status = run_async(ctx, lambda: ctx.coordinator.restart_migration(migration_id))
    _report_outcome(status)


@migrate.command(name="status")
@click.argument("migration_id", type=int)
@click.option("--batches", "show_batches", is_flag=True, help="List every batch")
@pass_context
@requires_config
@handle_errors
def status(ctx: BridgeContext, migration_id: int, show_batches: bool) -> None:
    """Show the progress of a migration."""
    _show_status(
        ctx.coordinator.get_migration_status(migration_id, include_batches=show_batches),
        show_batches=show_batches,
    )


@migrate.command(name="list")
@click.option(
    "--status",
    "status_filter",
    type=click.Choice(list(MIGRATION_STATUSES)),
    default=None,
    help="Only show migrations in this status",
)
@click.option("--limit", type=int, default=20, show_default=True)
@pass_context
@requires_config
@handle_errors
def list_migrations(ctx: BridgeContext, status_filter: str | None, limit: int) -> None:
    """List migrations, newest first."""
    migrations = ctx.coordinator.list_migrations(status=status_filter, limit=limit)
    if not migrations:
        echo_info("No migrations found")
        return

    print_table(
        "Migrations",
        ["ID", "Name", "Status", "Kinds", "Processed", "Total", "Progress", "Created"],
        [
            [
                m["id"],
                m["name"],
                m["status"],
                ", ".join(m["resource_kinds"]),
                format_count(m["processed_items"]),
                format_count(m["total_items"]),
                f"{m['progress_percentage']}%",
                m["created_at"],
            ]
            for m in migrations
        ],
    )
