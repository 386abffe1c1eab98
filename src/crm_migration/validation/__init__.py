"""Pre-migration validation: result models, engine and formatter."""

from crm_migration.validation.engine import ValidationEngine
from crm_migration.validation.formatter import ValidationFormatter
from crm_migration.validation.models import (
    IssueContext,
    Severity,
    ValidationIssue,
    ValidationResult,
    ValidationSummary,
)

__all__ = [
    "IssueContext",
    "Severity",
    "ValidationEngine",
    "ValidationFormatter",
    "ValidationIssue",
    "ValidationResult",
    "ValidationSummary",
]
