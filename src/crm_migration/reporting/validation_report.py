"""Validation report display and generation.

Console output uses rich tables and panels; files are written as JSON or
Markdown.
"""

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from crm_migration.utils.logging import get_logger
from crm_migration.validation.formatter import ValidationFormatter
from crm_migration.validation.models import Severity, ValidationIssue, ValidationResult

logger = get_logger(__name__)

SEVERITY_STYLES = {
    Severity.ERROR: "red",
    Severity.WARNING: "yellow",
    Severity.INFO: "blue",
}


def display_validation_summary(result: ValidationResult, console: Console | None = None) -> None:
    """Display the pass/fail panel and check counts of a result.

    Args:
        result: Validation result
        console: Rich console (created if None)
    """
    if console is None:
        console = Console()

    if result.is_valid:
        console.print(
            Panel.fit(
                "[green]✓ Validation passed. The template can be migrated.[/green]",
                title="Pre-migration Validation",
                border_style="green",
            )
        )
    else:
        console.print(
            Panel.fit(
                f"[bold red]✗ Validation failed with {len(result.errors)} error(s)[/bold red]\n"
                "Resolve the errors below before migrating",
                title="Pre-migration Validation",
                border_style="red",
            )
        )

    summary = result.summary
    table = Table(title="Validation Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Count", justify="right")
    table.add_row("Total Checks", str(summary.total_checks))
    table.add_row("Passed", f"[green]{summary.passed_checks}[/green]")
    table.add_row("Failed", f"[red]{summary.failed_checks}[/red]")
    table.add_row("Warnings", f"[yellow]{summary.warning_checks}[/yellow]")
    console.print(table)


def display_validation_issues(
    result: ValidationResult,
    console: Console | None = None,
    formatter: ValidationFormatter | None = None,
    max_per_group: int = 20,
) -> None:
    """Display issues grouped by check, one table per group.

    Args:
        result: Validation result
        console: Rich console (created if None)
        formatter: Formatter supplying group summaries
        max_per_group: Rows shown per group before truncating
    """
    if console is None:
        console = Console()
    formatter = formatter or ValidationFormatter()

    for check_name, issues in formatter.group_issues(result.all_issues).items():
        style = SEVERITY_STYLES[issues[0].severity]
        table = Table(
            title=f"[{style}]{formatter.summarize_group(check_name, issues)}[/{style}]",
            show_lines=False,
        )
        table.add_column("Record", style="cyan", no_wrap=True)
        table.add_column("Message", style="white", max_width=80)
        table.add_column("Link", style="blue", overflow="fold")

        for issue in issues[:max_per_group]:
            table.add_row(_record_label(issue), issue.message, issue.record_link or "")

        if len(issues) > max_per_group:
            table.add_row("...", f"{len(issues) - max_per_group} more", "")

        console.print(table)


def _record_label(issue: ValidationIssue) -> str:
    if issue.record_name and issue.record_id:
        return f"{issue.record_name} ({issue.record_id})"
    return issue.record_name or issue.record_id or "-"


class ValidationReport:
    """Serializable report of one validation run."""

    def __init__(
        self,
        template_id: str,
        source_org_id: str,
        target_org_id: str,
        result: ValidationResult,
    ):
        self.template_id = template_id
        self.source_org_id = source_org_id
        self.target_org_id = target_org_id
        self.result = result
        self.generated_at = datetime.now(UTC)

    def to_dict(self) -> dict[str, Any]:
        return {
            "report_version": "1.0",
            "generated_at": self.generated_at.isoformat(),
            "template_id": self.template_id,
            "source_org_id": self.source_org_id,
            "target_org_id": self.target_org_id,
            **self.result.to_dict(),
        }

    def generate_json(self, output_path: str | Path | None = None) -> str:
        """Generate JSON report.

        Args:
            output_path: Optional path to save report

        Returns:
            JSON report as string
        """
        json_str = json.dumps(self.to_dict(), indent=2, default=str)

        if output_path:
            path = Path(output_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json_str)
            logger.info("json_report_saved", path=str(path))

        return json_str

    def generate_markdown(self, output_path: str | Path | None = None) -> str:
        """Generate Markdown report.

        Args:
            output_path: Optional path to save report

        Returns:
            Markdown report as string
        """
        summary = self.result.summary
        lines = [
            "# Pre-migration Validation Report",
            "",
            f"**Template:** `{self.template_id}`  ",
            f"**Source org:** `{self.source_org_id}`  ",
            f"**Target org:** `{self.target_org_id}`  ",
            f"**Generated:** {self.generated_at.strftime('%Y-%m-%d %H:%M:%S UTC')}  ",
            f"**Status:** {'PASSED' if self.result.is_valid else 'FAILED'}",
            "",
            "| Metric | Count |",
            "|--------|------:|",
            f"| Total Checks | {summary.total_checks} |",
            f"| Passed | {summary.passed_checks} |",
            f"| Failed | {summary.failed_checks} |",
            f"| Warnings | {summary.warning_checks} |",
            "",
        ]

        for heading, issues in (
            ("Errors", self.result.errors),
            ("Warnings", self.result.warnings),
            ("Info", self.result.info),
        ):
            if not issues:
                continue
            lines.extend([f"## {heading}", ""])
            for issue in issues:
                record = f" ({_record_label(issue)})" if issue.record_id else ""
                lines.append(f"- **{issue.check_name}**{record}: {issue.message}")
            lines.append("")

        markdown = "\n".join(lines)

        if output_path:
            path = Path(output_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(markdown)
            logger.info("markdown_report_saved", path=str(path))

        return markdown


def save_validation_report(report: ValidationReport, output_path: str | Path) -> Path:
    """Write a report in the format implied by the file suffix (.md or JSON)."""
    path = Path(output_path)
    if path.suffix.lower() in (".md", ".markdown"):
        report.generate_markdown(path)
    else:
        report.generate_json(path)
    return path
