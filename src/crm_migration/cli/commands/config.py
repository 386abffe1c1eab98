"""
Configuration management commands.
"""

import asyncio
from pathlib import Path

import click

from crm_migration.cli.context import MigrationContext
from crm_migration.cli.decorators import handle_errors, pass_context, requires_config
from crm_migration.cli.utils import echo_error, echo_info, echo_success, echo_warning, print_table
from crm_migration.config import MigrationConfig
from crm_migration.utils.logging import get_logger

logger = get_logger(__name__)


@click.group(name="config")
def config() -> None:
    """Configuration management commands."""
    pass


@config.command(name="validate")
@click.option(
    "--check-connectivity",
    is_flag=True,
    help="Test connectivity to every configured org",
)
@pass_context
@requires_config
@handle_errors
def validate(ctx: MigrationContext, check_connectivity: bool) -> None:
    """Validate the configuration file.

    Examples:

        crm-bridge config validate --config config.yaml

        crm-bridge config validate --config config.yaml --check-connectivity
    """
    echo_info(f"Validating configuration: {ctx.config_path}")
    config = ctx.config

    click.echo()
    _display_config_summary(config)

    if not config.orgs:
        echo_warning("No orgs configured")

    templates_dir = Path(config.paths.templates_dir)
    if templates_dir.is_dir():
        echo_success(f"Templates directory exists: {templates_dir}")
    else:
        echo_info(f"Templates directory not found, using built-in templates only: {templates_dir}")

    if check_connectivity and config.orgs:
        click.echo()
        echo_info("Testing connectivity...")
        _test_connectivity(ctx)

    click.echo()
    echo_success("Configuration is valid!")


@config.command(name="show")
@pass_context
@requires_config
@handle_errors
def show(ctx: MigrationContext) -> None:
    """Show the effective configuration. Access tokens are never printed."""
    _display_config_summary(ctx.config)


def _display_config_summary(config: MigrationConfig) -> None:
    rows: list[list] = [
        [f"Org '{org_id}'", f"{org.instance_url} (API v{org.api_version})"]
        for org_id, org in sorted(config.orgs.items())
    ]
    rows.extend(
        [
            ["Templates Directory", config.paths.templates_dir],
            ["Rate Limit (req/s)", config.performance.rate_limit],
            ["Retry Attempts", config.performance.retry_attempts],
            ["Source Record Limit", config.validation.source_record_limit],
            ["Picklist Fallback Limit", config.validation.picklist_fallback_limit],
            ["Format Issues", config.validation.format_issues],
            ["Managed External ID", config.external_id.managed_field],
            ["Unmanaged External ID", config.external_id.unmanaged_field],
            ["Fallback External ID", config.external_id.fallback_field],
        ]
    )
    print_table("Configuration Summary", ["Setting", "Value"], rows)


def _test_connectivity(ctx: MigrationContext) -> None:
    org_ids = sorted(ctx.config.orgs)

    async def check() -> dict[str, bool]:
        connections = ctx.create_connections()
        try:
            return {
                org_id: await connections.are_all_orgs_healthy([org_id]) for org_id in org_ids
            }
        finally:
            await connections.close()

    results = asyncio.run(check())
    for org_id, healthy in results.items():
        if healthy:
            echo_success(f"Connected to org '{org_id}'")
        else:
            echo_error(f"Cannot connect to org '{org_id}'")

    if not all(results.values()):
        logger.error("connectivity_check_failed", orgs=[o for o, ok in results.items() if not ok])
        raise click.ClickException("Connectivity check failed")
