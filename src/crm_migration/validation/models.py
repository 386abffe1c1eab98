"""Data models for pre-migration validation results."""

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any


class Severity(Enum):
    """Severity levels for validation issues."""

    ERROR = "error"  # Blocks migration
    WARNING = "warning"  # Migration can proceed, result may be incomplete
    INFO = "info"  # Informational, no action needed


@dataclass
class IssueContext:
    """Structured detail used to build readable messages."""

    source_value: str | None = None
    target_object: str | None = None
    missing_target_name: str | None = None
    missing_target_external_id: str | None = None
    source_record_type: str | None = None
    invalid_values: list[str] = field(default_factory=list)
    valid_values: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, dropping empty entries."""
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name)}


@dataclass
class ValidationIssue:
    """One finding of a validation run.

    A null ``record_id`` means the issue is aggregate rather than tied to a
    single record.
    """

    check_name: str
    message: str
    severity: Severity
    record_id: str | None = None
    record_name: str | None = None
    record_link: str | None = None
    field: str | None = None
    parent_record_id: str | None = None
    suggested_action: str | None = None
    context: IssueContext | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data: dict[str, Any] = {
            "check_name": self.check_name,
            "message": self.message,
            "severity": self.severity.value,
            "record_id": self.record_id,
            "record_name": self.record_name,
        }
        for optional in ("record_link", "field", "parent_record_id", "suggested_action"):
            value = getattr(self, optional)
            if value is not None:
                data[optional] = value
        if self.context is not None:
            data["context"] = self.context.to_dict()
        return data


@dataclass(frozen=True)
class ValidationSummary:
    """Check counts derived from a result's issue lists."""

    total_checks: int = 0
    passed_checks: int = 0
    failed_checks: int = 0
    warning_checks: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "total_checks": self.total_checks,
            "passed_checks": self.passed_checks,
            "failed_checks": self.failed_checks,
            "warning_checks": self.warning_checks,
        }


@dataclass
class ValidationResult:
    """Issues of a validation run bucketed by severity.

    ``is_valid`` and ``summary`` are computed from the three lists on every
    access.
    """

    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)
    info: list[ValidationIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        """True iff there are no error-severity issues."""
        return not self.errors

    @property
    def summary(self) -> ValidationSummary:
        total = len(self.errors) + len(self.warnings) + len(self.info)
        return ValidationSummary(
            total_checks=total,
            passed_checks=total - len(self.errors) - len(self.warnings),
            failed_checks=len(self.errors),
            warning_checks=len(self.warnings),
        )

    def add_issue(self, issue: ValidationIssue) -> None:
        """Append an issue to the bucket matching its severity."""
        if issue.severity == Severity.ERROR:
            self.errors.append(issue)
        elif issue.severity == Severity.WARNING:
            self.warnings.append(issue)
        else:
            self.info.append(issue)

    def merge(self, other: "ValidationResult") -> None:
        """Concatenate another result's issues onto this one."""
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)
        self.info.extend(other.info)

    @property
    def all_issues(self) -> list[ValidationIssue]:
        """Errors, then warnings, then info."""
        return [*self.errors, *self.warnings, *self.info]

    @classmethod
    def from_issues(cls, issues: list[ValidationIssue]) -> "ValidationResult":
        result = cls()
        for issue in issues:
            result.add_issue(issue)
        return result

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "is_valid": self.is_valid,
            "errors": [issue.to_dict() for issue in self.errors],
            "warnings": [issue.to_dict() for issue in self.warnings],
            "info": [issue.to_dict() for issue in self.info],
            "summary": self.summary.to_dict(),
        }
