"""Tests for validation report display and files."""

import json

import pytest
from rich.console import Console

from crm_migration.reporting import (
    ValidationReport,
    display_validation_issues,
    display_validation_summary,
    save_validation_report,
)
from crm_migration.validation.models import Severity, ValidationIssue, ValidationResult


@pytest.fixture
def result() -> ValidationResult:
    return ValidationResult.from_issues(
        [
            ValidationIssue(
                check_name="Missing Pay Code Reference",
                message="Pay Code 'PC-9' referenced by 'Rule A' doesn't exist in target org.",
                severity=Severity.ERROR,
                record_id="a01",
                record_name="Rule A",
                record_link="https://source.example.com/a01",
            ),
            ValidationIssue(
                check_name="Pay Codes Missing External IDs",
                message="2 pay codes missing external IDs.",
                severity=Severity.WARNING,
            ),
        ]
    )


@pytest.fixture
def console() -> Console:
    return Console(record=True, width=200)


class TestDisplay:
    def test_failed_summary(self, result, console):
        display_validation_summary(result, console)

        output = console.export_text()
        assert "Validation failed with 1 error(s)" in output
        assert "Total Checks" in output

    def test_passed_summary(self, console):
        display_validation_summary(ValidationResult(), console)

        assert "Validation passed" in console.export_text()

    def test_issue_tables(self, result, console):
        display_validation_issues(result, console)

        output = console.export_text()
        assert "Missing Pay Code Reference (1 issue) - 1 record to review" in output
        assert "Rule A (a01)" in output
        assert "https://source.example.com/a01" in output
        assert "Pay Codes Missing External IDs (1 issue)" in output

    def test_issue_rows_truncated(self, console):
        issues = [
            ValidationIssue("Check", f"problem {i}", Severity.ERROR, record_id=f"a{i:02d}")
            for i in range(5)
        ]

        display_validation_issues(ValidationResult.from_issues(issues), console, max_per_group=2)

        output = console.export_text()
        assert "a01" in output
        assert "a02" not in output
        assert "3 more" in output


class TestReportFiles:
    def test_json(self, result, tmp_path):
        report = ValidationReport("payroll-pay-codes", "source", "target", result)
        path = save_validation_report(report, tmp_path / "reports" / "validation.json")

        data = json.loads(path.read_text())
        assert data["report_version"] == "1.0"
        assert data["template_id"] == "payroll-pay-codes"
        assert data["is_valid"] is False
        assert data["summary"]["failed_checks"] == 1
        assert data["errors"][0]["record_link"] == "https://source.example.com/a01"
        assert data["warnings"][0]["severity"] == "warning"

    def test_markdown(self, result, tmp_path):
        report = ValidationReport("payroll-pay-codes", "source", "target", result)
        path = save_validation_report(report, tmp_path / "validation.md")

        markdown = path.read_text()
        assert "**Status:** FAILED" in markdown
        assert "## Errors" in markdown
        assert "- **Missing Pay Code Reference** (Rule A (a01)):" in markdown
        assert "- **Pay Codes Missing External IDs**: 2 pay codes missing external IDs." in markdown
        assert "## Info" not in markdown

    def test_passed_report(self):
        markdown = ValidationReport("t", "s", "g", ValidationResult()).generate_markdown()

        assert "**Status:** PASSED" in markdown
        assert "## Errors" not in markdown
