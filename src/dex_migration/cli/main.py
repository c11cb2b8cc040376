"""
Main CLI entry point for DEX Bridge.

This module provides the command-line interface for migrating, enriching
and verifying DSS Data Exchange records.
"""

import sys
from pathlib import Path

import click
from dotenv import load_dotenv

from dex_migration import __version__
from dex_migration.cli.commands import enrich as enrich_commands
from dex_migration.cli.commands import migrate as migrate_commands
from dex_migration.cli.commands import verify as verify_commands
from dex_migration.cli.context import BridgeContext
from dex_migration.utils.logging import configure_logging, get_logger

# Load environment variables from .env file
load_dotenv()

logger = get_logger(__name__)


@click.group()
@click.version_option(version=__version__, prog_name="dex-bridge")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file",
    envvar="DEX_BRIDGE_CONFIG",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    help="Set console logging level (file logging stays at DEBUG)",
    envvar="DEX_BRIDGE_LOG_LEVEL",
)
@click.option(
    "--log-file",
    type=click.Path(path_type=Path),
    help="Write JSON logs to this file",
    envvar="DEX_BRIDGE_LOG_FILE",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config: Path | None,
    log_level: str,
    log_file: Path | None,
) -> None:
    """DEX Bridge - Migrate DSS Data Exchange records into a local store.

    Records are pulled from DEX in batches, optionally enriched with full
    case and session detail, and spot-checked against the source.

    Examples:

        # Plan and run a migration
        dex-bridge migrate run clients cases --config config.yaml

        # Enrich migrated cases
        dex-bridge enrich start cases --config config.yaml

        # Verify a sample of migration 1
        dex-bridge verify run 1 --config config.yaml
    """
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)

    configure_logging(level=log_level, log_file=str(log_file) if log_file else None)

    ctx.obj = BridgeContext(
        config_path=config,
        log_level=log_level,
        log_file=log_file,
    )

    logger.debug(
        "cli_initialized",
        config=str(config) if config else None,
        log_level=log_level,
    )


cli.add_command(migrate_commands.migrate)
cli.add_command(enrich_commands.enrich)
cli.add_command(verify_commands.verify)


def main() -> int:
    """Main entry point for CLI."""
    try:
        # Without standalone mode click returns the exit code of a handled Exit
        result = cli(standalone_mode=False)
        return result if isinstance(result, int) else 0
    except click.ClickException as e:
        e.show()
        return e.exit_code
    except click.exceptions.Abort:
        click.echo("Aborted!", err=True)
        return 1
    except Exception as e:
        logger.error("unexpected_error", error=str(e), exc_info=True)
        click.echo(f"Error: {e}", err=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
