"""Reporting for validation results."""

from crm_migration.reporting.validation_report import (
    ValidationReport,
    display_validation_issues,
    display_validation_summary,
    save_validation_report,
)

__all__ = [
    "ValidationReport",
    "display_validation_issues",
    "display_validation_summary",
    "save_validation_report",
]
