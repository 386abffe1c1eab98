"""
Main CLI entry point for CRM Bridge.

Validates data migration templates between CRM orgs before any record is
moved.
"""

import sys
from pathlib import Path

import click
from dotenv import load_dotenv

from crm_migration import __version__
from crm_migration.cli.commands import config as config_commands
from crm_migration.cli.commands import templates as templates_commands
from crm_migration.cli.commands import validate as validate_commands
from crm_migration.cli.context import MigrationContext
from crm_migration.utils.logging import configure_logging, get_logger

# Load environment variables from .env file
load_dotenv()

logger = get_logger(__name__)


@click.group()
@click.version_option(version=__version__, prog_name="crm-bridge")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file",
    envvar="CRM_BRIDGE_CONFIG",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="ERROR",
    help="Set console logging level (file logging stays at DEBUG)",
    envvar="CRM_BRIDGE_LOG_LEVEL",
)
@click.option(
    "--log-file",
    type=click.Path(path_type=Path),
    help="Also write logs to this file",
    envvar="CRM_BRIDGE_LOG_FILE",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config: Path | None,
    log_level: str,
    log_file: Path | None,
) -> None:
    """CRM Bridge - validate migration templates between orgs.

    Examples:

        # List templates
        crm-bridge templates list

        # Validate configuration and org connectivity
        crm-bridge --config config.yaml config validate --check-connectivity

        # Validate a template before migrating
        crm-bridge --config config.yaml validate -t payroll-pay-codes -s source -T target
    """
    configure_logging(level=log_level, log_file=str(log_file) if log_file else None)

    ctx.obj = MigrationContext(
        config_path=config,
        log_level=log_level,
        log_file=log_file,
    )

    logger.debug(
        "cli_initialized",
        config=str(config) if config else None,
        log_level=log_level,
    )


cli.add_command(config_commands.config)
cli.add_command(templates_commands.templates)
cli.add_command(validate_commands.validate)


def main() -> int:
    """Main entry point for CLI."""
    try:
        result = cli(standalone_mode=False)
        return result if isinstance(result, int) else 0
    except click.exceptions.Exit as e:
        return e.exit_code
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
