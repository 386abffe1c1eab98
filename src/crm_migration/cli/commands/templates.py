"""
Template inspection commands.
"""

import click

from crm_migration.cli.context import MigrationContext
from crm_migration.cli.decorators import handle_errors, pass_context
from crm_migration.cli.utils import echo_error, echo_info, echo_success, print_table
from crm_migration.templates.registry import validate_template_structure


@click.group(name="templates")
def templates() -> None:
    """List and inspect migration templates."""
    pass


@templates.command(name="list")
@click.option("--category", help="Only templates in this category")
@click.option("--search", "term", help="Only templates whose name or description matches")
@pass_context
@handle_errors
def list_templates(ctx: MigrationContext, category: str | None, term: str | None) -> None:
    """List available templates (built-in and from the templates directory)."""
    registry = ctx.registry
    found = registry.search(term) if term else registry.list_templates()
    if category:
        found = [t for t in found if t.category == category]

    if not found:
        echo_info("No templates found")
        return

    rows = [
        [t.id, t.name, t.category, t.metadata.complexity, len(t.etl_steps)]
        for t in sorted(found, key=lambda t: t.id)
    ]
    print_table("Migration Templates", ["ID", "Name", "Category", "Complexity", "Steps"], rows)


@templates.command(name="show")
@click.argument("reference")
@pass_context
@handle_errors
def show(ctx: MigrationContext, reference: str) -> None:
    """Show the steps and checks of a template (id or YAML path)."""
    template = ctx.registry.resolve(reference)

    click.echo(f"{template.name} ({template.id}, v{template.version})")
    if template.description:
        click.echo(template.description)
    click.echo()

    rows = []
    for position, step in enumerate(template.ordered_steps(), start=1):
        config = step.validation_config
        rows.append(
            [
                position,
                step.step_name,
                step.extract_config.object_api_name,
                len(config.pre_validation_queries) if config else 0,
                len(config.dependency_checks) if config else 0,
                len(config.data_integrity_checks) if config else 0,
                len(config.picklist_validation_checks or []) if config else 0,
            ]
        )
    print_table(
        "Execution Order",
        ["#", "Step", "Object", "Pre-queries", "Dependencies", "Integrity", "Picklists"],
        rows,
    )

    problems = validate_template_structure(template)
    if problems:
        for problem in problems:
            echo_error(problem)
        raise click.exceptions.Exit(2)
    echo_success("Template structure is valid")
