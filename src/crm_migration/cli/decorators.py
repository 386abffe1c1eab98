"""
Decorators for CLI commands: error handling, context passing and config loading.
"""

import functools
from collections.abc import Callable

import click

from crm_migration.cli.context import MigrationContext
from crm_migration.client.exceptions import (
    APIError,
    AuthenticationError,
    ConfigurationError,
    TemplateError,
)
from crm_migration.utils.logging import get_logger, log_error

logger = get_logger(__name__)


def pass_context(f: Callable) -> Callable:
    """Pass the MigrationContext as the first argument of the command function."""

    @click.pass_context
    @functools.wraps(f)
    def wrapper(click_ctx: click.Context, *args, **kwargs):
        migration_ctx: MigrationContext = click_ctx.obj
        return f(migration_ctx, *args, **kwargs)

    return wrapper


def handle_errors(f: Callable) -> Callable:
    """
    Convert common exceptions into messages and exit codes.

    Exit codes:
        0: Success
        1: General error (including a failed validation)
        2: Configuration or template error
        3: Authentication error
        4: API error
    """

    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)

        except click.exceptions.Exit:
            raise

        except (ConfigurationError, TemplateError) as e:
            logger.error("configuration_error", error=str(e))
            click.echo(f"Configuration Error: {e}", err=True)
            raise click.exceptions.Exit(2) from e

        except AuthenticationError as e:
            logger.error("authentication_error", error=str(e))
            click.echo(f"Authentication Error: {e}", err=True)
            click.echo(
                "\nPlease verify the org access tokens in the configuration file.",
                err=True,
            )
            raise click.exceptions.Exit(3) from e

        except APIError as e:
            logger.error("api_error", error=str(e))
            click.echo(f"API Error: {e}", err=True)
            if e.status_code:
                click.echo(f"\nResponse status: {e.status_code}", err=True)
            raise click.exceptions.Exit(4) from e

        except Exception as e:
            log_error(logger, e, f.__name__)
            click.echo(f"Unexpected Error: {e}", err=True)
            click.echo(
                "\nAn unexpected error occurred. Please check the logs for details.",
                err=True,
            )
            raise click.exceptions.Exit(1) from e

    return wrapper


def requires_config(f: Callable) -> Callable:
    """Ensure a configuration file was given and loads cleanly."""

    @functools.wraps(f)
    def wrapper(ctx: MigrationContext, *args, **kwargs):
        if ctx.config_path is None:
            click.echo(
                "Error: Configuration file required. Use --config option or set CRM_BRIDGE_CONFIG.",
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
