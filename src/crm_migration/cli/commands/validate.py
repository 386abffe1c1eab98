"""
Pre-migration validation command.
"""

import asyncio
from pathlib import Path

import click

from crm_migration.cli.context import MigrationContext
from crm_migration.cli.decorators import handle_errors, pass_context, requires_config
from crm_migration.cli.utils import console, echo_error, echo_info, echo_success, echo_warning
from crm_migration.client.exceptions import ConfigurationError
from crm_migration.reporting.validation_report import (
    ValidationReport,
    display_validation_issues,
    display_validation_summary,
    save_validation_report,
)
from crm_migration.templates.models import MigrationTemplate
from crm_migration.utils.logging import get_logger
from crm_migration.validation.engine import ValidationEngine
from crm_migration.validation.models import ValidationResult

logger = get_logger(__name__)


@click.command(name="validate")
@click.option(
    "--template",
    "-t",
    "template_ref",
    required=True,
    help="Template id or path to a YAML template",
)
@click.option("--source", "-s", "source_org", required=True, help="Source org id")
@click.option("--target", "-T", "target_org", required=True, help="Target org id")
@click.option(
    "--record-id",
    "-r",
    "record_ids",
    multiple=True,
    help="Restrict validation to these source record ids (repeatable)",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(path_type=Path),
    help="Write the report to this file (.json or .md)",
)
@pass_context
@requires_config
@handle_errors
def validate(
    ctx: MigrationContext,
    template_ref: str,
    source_org: str,
    target_org: str,
    record_ids: tuple[str, ...],
    output: Path | None,
) -> None:
    """Validate a migration template against a source and target org.

    Runs every step's pre-validation queries, dependency checks, data
    integrity checks and picklist checks, then reports issues grouped by
    check. Exits with status 1 when any error is found.

    Examples:

        # Validate the pay codes template
        crm-bridge -c config.yaml validate -t payroll-pay-codes -s source -T target

        # Validate selected records and save a report
        crm-bridge -c config.yaml validate -t rules.yaml -s source -T target \\
            -r a0B000000000001 -r a0B000000000002 -o reports/rules.json
    """
    config = ctx.config
    for org_id in (source_org, target_org):
        if org_id not in config.orgs:
            raise ConfigurationError(
                f"Org '{org_id}' is not configured. Known orgs: {', '.join(sorted(config.orgs))}"
            )

    template = ctx.registry.resolve(template_ref)
    echo_info(f"Validating template '{template.name}' ({source_org} -> {target_org})")

    instance_url = None
    if config.validation.format_issues:
        instance_url = config.get_org(source_org).instance_url

    result = asyncio.run(
        _run_validation(
            ctx,
            template,
            source_org,
            target_org,
            list(record_ids) or None,
            instance_url,
        )
    )

    click.echo()
    display_validation_summary(result, console=console)
    display_validation_issues(result, console=console)

    if output:
        report = ValidationReport(template.id, source_org, target_org, result)
        path = save_validation_report(report, output)
        echo_success(f"Report saved to {path}")

    if result.is_valid:
        if result.warnings:
            echo_warning(f"Validation passed with {len(result.warnings)} warning(s)")
        else:
            echo_success("Validation passed")
        return

    echo_error(f"Validation failed with {len(result.errors)} error(s)")
    raise click.exceptions.Exit(1)


async def _run_validation(
    ctx: MigrationContext,
    template: MigrationTemplate,
    source_org: str,
    target_org: str,
    record_ids: list[str] | None,
    instance_url: str | None,
) -> ValidationResult:
    connections = ctx.create_connections()
    try:
        engine = ValidationEngine(
            connections,
            settings=ctx.config.validation,
            external_id_settings=ctx.config.external_id,
        )
        return await engine.validate_template(
            template,
            source_org,
            target_org,
            selected_record_ids=record_ids,
            source_instance_url=instance_url,
        )
    finally:
        await connections.close()
