"""
Utility functions for CLI commands.

Output helpers shared by the command groups: coloured one-line messages,
number and duration formatting, and rich tables.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, TypeVar

import click
from rich.console import Console
from rich.table import Table

from dex_migration.cli.context import BridgeContext

console = Console()

T = TypeVar("T")


def echo_success(message: str) -> None:
    """Print success message in green."""
    click.secho(f"✓ {message}", fg="green")


def echo_error(message: str) -> None:
    """Print error message in red."""
    click.secho(f"✗ {message}", fg="red", err=True)


def echo_warning(message: str) -> None:
    """Print warning message in yellow."""
    click.secho(f"⚠ {message}", fg="yellow")


def echo_info(message: str) -> None:
    """Print info message in blue."""
    click.secho(f"ℹ {message}", fg="blue")


def run_async(ctx: BridgeContext, operation: Callable[[], Awaitable[T]]) -> T:
    """Run a coroutine on a fresh event loop, closing the DEX client afterwards."""

    async def _runner() -> T:
        try:
            return await operation()
        finally:
            await ctx.close()

    return asyncio.run(_runner())


def format_duration(seconds: float) -> str:
    """
    Format duration in human-readable format.

    Args:
        seconds: Duration in seconds

    Returns:
        Formatted duration string (e.g., "2h 30m 15s")
    """
    if seconds < 60:
        return f"{seconds:.1f}s"

    minutes = int(seconds // 60)
    remaining_seconds = int(seconds % 60)

    if minutes < 60:
        return f"{minutes}m {remaining_seconds}s"

    hours = minutes // 60
    remaining_minutes = minutes % 60

    return f"{hours}h {remaining_minutes}m {remaining_seconds}s"


def elapsed(started_at: str | None, completed_at: str | None) -> str:
    """Duration between two ISO timestamps, or "-" if either is missing."""
    if not started_at or not completed_at:
        return "-"
    delta = datetime.fromisoformat(completed_at) - datetime.fromisoformat(started_at)
    return format_duration(delta.total_seconds())


def format_count(count: int) -> str:
    """Format large numbers with thousands separator."""
    return f"{count:,}"


def print_table(
    title: str,
    columns: list[str],
    rows: list[list[Any]],
    show_header: bool = True,
) -> None:
    """
    Print a formatted table using rich.

    Args:
        title: Table title
        columns: Column headers
        rows: List of row data
        show_header: Whether to show header row
    """
    table = Table(title=title, show_header=show_header)

    for col in columns:
        table.add_column(col)

    for row in rows:
        table.add_row(*["-" if cell is None else str(cell) for cell in row])

    console.print(table)


def print_stats(stats: dict[str, Any], title: str = "Statistics") -> None:
    """Print a flat dictionary as a two-column table."""
    rows = [
        [key.replace("_", " ").title(), format_count(value) if _is_count(value) else value]
        for key, value in stats.items()
    ]
    print_table(title, ["Metric", "Value"], rows)


def _is_count(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)
