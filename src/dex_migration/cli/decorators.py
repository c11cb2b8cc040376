"""
Decorators for CLI commands.

This module provides decorators for error handling, context passing,
and other common CLI patterns.
"""

import functools
from collections.abc import Callable

import click

from dex_migration.cli.context import BridgeContext
from dex_migration.client.exceptions import (
    APIError,
    AuthenticationError,
    ConfigurationError,
    DexMigrationError,
    EnrichmentInProgressError,
    MigrationError,
    NetworkError,
    StateError,
    ValidationError,
)
from dex_migration.utils.logging import get_logger

logger = get_logger(__name__)


def pass_context(f: Callable) -> Callable:
    """
    Decorator to pass BridgeContext to command function.

    Usage:
        @click.command()
        @pass_context
        def my_command(ctx: BridgeContext):
            print(ctx.config)
    """

    @click.pass_context
    @functools.wraps(f)
    def wrapper(click_ctx: click.Context, *args, **kwargs):
        bridge_ctx: BridgeContext = click_ctx.obj
        return f(bridge_ctx, *args, **kwargs)

    return wrapper


def handle_errors(f: Callable) -> Callable:
    """
    Decorator to handle common errors in CLI commands.

    Exit codes:
        0: Success
        1: General error
        2: Configuration or validation error
        3: Authentication error
        4: API or network error
        5: State error
        6: Enrichment already running
    """

    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)

        except click.exceptions.Exit:
            raise

        except (ConfigurationError, ValidationError) as e:
            logger.error("configuration_error", error=str(e))
            click.echo(f"Configuration Error: {e}", err=True)
            raise click.exceptions.Exit(2) from e

        except AuthenticationError as e:
            logger.error("authentication_error", error=str(e))
            click.echo(f"Authentication Error: {e}", err=True)
            click.echo("\nPlease verify the DEX token in the configuration file.", err=True)
            raise click.exceptions.Exit(3) from e

        except (APIError, NetworkError) as e:
            logger.error("api_error", error=str(e))
            click.echo(f"API Error: {e}", err=True)
            if getattr(e, "status_code", None):
                click.echo(f"\nResponse status: {e.status_code}", err=True)
            raise click.exceptions.Exit(4) from e

        except StateError as e:
            logger.error("state_error", error=str(e))
            click.echo(f"State Error: {e}", err=True)
            raise click.exceptions.Exit(5) from e

        except EnrichmentInProgressError as e:
            logger.warning("enrichment_busy", error=str(e))
            click.echo(f"Enrichment Busy: {e}", err=True)
            raise click.exceptions.Exit(6) from e

        except MigrationError as e:
            logger.error("migration_error", error=str(e))
            click.echo(f"Migration Error: {e}", err=True)
            raise click.exceptions.Exit(1) from e

        except DexMigrationError as e:
            logger.error("bridge_error", error=str(e))
            click.echo(f"Error: {e}", err=True)
            raise click.exceptions.Exit(1) from e

        except Exception as e:
            logger.error("unexpected_error", error=str(e), exc_info=True)
            click.echo(f"Unexpected Error: {e}", err=True)
            click.echo(
                "\nAn unexpected error occurred. Please check the logs for details.",
                err=True,
            )
            raise click.exceptions.Exit(1) from e

    return wrapper


def requires_config(f: Callable) -> Callable:
    """Decorator to ensure configuration is provided and loads cleanly."""

    @functools.wraps(f)
    def wrapper(ctx: BridgeContext, *args, **kwargs):
        if ctx.config_path is None:
            click.echo(
                "Error: Configuration file required. Use --config option or set DEX_BRIDGE_CONFIG.",
                err=True,
            )
            raise click.exceptions.Exit(2)

        try:
            _ = ctx.config
        except Exception as e:
            click.echo(f"Error loading configuration: {e}", err=True)
            raise click.exceptions.Exit(2) from e

        return f(ctx, *args, **kwargs)

    return wrapper


def confirm_action(
    message: str = "Do you want to continue?",
    abort_message: str = "Operation cancelled.",
) -> Callable:
    """
    Decorator to prompt for confirmation before executing a command.

    The prompt is skipped when the command has a ``yes`` parameter set.
    """

    def decorator(f: Callable) -> Callable:
        @functools.wraps(f)
        def wrapper(*args, **kwargs):
            ctx = click.get_current_context()
            if ctx.params.get("yes", False):
                return f(*args, **kwargs)

            if not click.confirm(message):
                click.echo(abort_message)
                raise click.exceptions.Exit(0)

            return f(*args, **kwargs)

        return wrapper

    return decorator
