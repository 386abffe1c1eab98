"""Presentation formatting for validation issues.

Turns the engine's internal check names and messages into titles and
sentences a migration operator can act on, and groups issues for reports.
"""

import re
from dataclasses import replace

from crm_migration.validation.models import ValidationIssue, ValidationResult

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")
_QUOTED = re.compile(r"'([^']+)'")
_FOUND_COUNT = re.compile(r"Found (\d+) records?", re.IGNORECASE)
_INVALID_VALUES = re.compile(r"Invalid picklist values found[^:]*: ([^.]+)")
_VALID_VALUES = re.compile(r"Valid values are: (.+)$")

PICKLIST_CHECK_PREFIX = "picklistValidation_"
DEFAULT_SUGGESTED_ACTION = "Review and fix the data issue before proceeding with migration."


def object_label(api_name: str) -> str:
    """Human label of an object API name (``tc9_pr__Pay_Code__c`` -> ``Pay Code``)."""
    name = re.sub(r"__[cr]$", "", api_name)
    if "__" in name:
        name = name.split("__", 1)[1]
    return name.replace("_", " ").strip() or api_name


def _plural(count: int | str, word: str) -> str:
    return f"{count} {word}{'' if str(count) == '1' else 's'}"


class ValidationFormatter:
    """Rewrites validation issues for display."""

    ERROR_TITLES: dict[str, str] = {
        # Connectivity and engine failures
        "orgConnectivity": "Organisation Connection Error",
        "stepValidation": "Step Validation Failed",
        "templateValidation": "Template Validation Failed",
        # Dependency checks
        "payCodeExists": "Missing Pay Code Reference",
        "interpretationRuleExists": "Missing Interpretation Rule",
        "leaveHeaderExists": "Missing Leave Header",
        "leaveRuleExists": "Missing Leave Rule",
        "overtimePayCodeExists": "Missing Overtime Pay Code",
        "dailyPayCodeCapRecordExists": "Missing Daily Pay Code Cap",
        "frequencyPayCodeCapRecordExists": "Missing Frequency Pay Code Cap",
        # External ID validations
        "sourcePayCodeExternalIdValidation": "Pay Codes Missing External IDs",
        "sourceOvertimePayCodeExternalIdValidation": "Overtime Pay Codes Missing External IDs",
        "sourceLeaveRuleExternalIdValidation": "Leave Rules Missing External IDs",
        "sourceInterpretationRuleExternalIdValidation": (
            "Interpretation Rules Missing External IDs"
        ),
        # Data integrity checks
        "breakpointIntegrity": "Breakpoint Missing Required Fields",
        "payCodeExternalIdConsistency": "Pay Code External ID Inconsistency",
        "recordTypeMappingCoverage": "Unmapped Record Types",
    }

    CHECK_OBJECT_TYPES: dict[str, str] = {
        "sourcePayCodeExternalIdValidation": "Pay Code",
        "sourceOvertimePayCodeExternalIdValidation": "Overtime Pay Code",
        "sourceLeaveRuleExternalIdValidation": "Leave Rule",
        "sourceInterpretationRuleExternalIdValidation": "Interpretation Rule",
    }

    SUGGESTED_ACTIONS: dict[str, str] = {
        "orgConnectivity": "Reconnect to the organisation.",
        "payCodeExists": "Migrate the missing pay code first or update the reference.",
        "stepValidation": "Check the step's queries and org permissions.",
    }

    def get_title(self, check_name: str) -> str:
        """Display title of a check."""
        if check_name in self.ERROR_TITLES:
            return self.ERROR_TITLES[check_name]
        if check_name.startswith(PICKLIST_CHECK_PREFIX):
            field_name = check_name[len(PICKLIST_CHECK_PREFIX) :]
            return f"Invalid {object_label(field_name)} Values"
        return self.generate_friendly_title(check_name)

    @staticmethod
    def generate_friendly_title(check_name: str) -> str:
        """Expand camelCase into Title Case (``payCodeExists`` -> ``Pay Code Exists``)."""
        words = _CAMEL_BOUNDARY.sub(" ", check_name).strip()
        return words[:1].upper() + words[1:]

    def format_issue(
        self,
        issue: ValidationIssue,
        source_org_id: str,
        instance_url: str | None = None,
    ) -> ValidationIssue:
        """Return a display copy of an issue.

        The copy carries the friendly title as ``check_name``, a rewritten
        message, a record link when both record id and instance URL are
        known, and no ``suggested_action``.

        Args:
            issue: Issue as produced by the engine
            source_org_id: Org the issue's records belong to
            instance_url: Base URL of that org

        Returns:
            Formatted copy; the input is not modified
        """
        record_link = None
        if issue.record_id and instance_url:
            record_link = f"{instance_url.rstrip('/')}/{issue.record_id}"

        return replace(
            issue,
            check_name=self.get_title(issue.check_name),
            message=self.format_message(issue),
            record_link=record_link or issue.record_link,
            suggested_action=None,
        )

    def format_result(
        self, result: ValidationResult, source_org_id: str, instance_url: str | None = None
    ) -> ValidationResult:
        """Format every issue of a result, keeping severity buckets."""
        return ValidationResult(
            errors=[self.format_issue(i, source_org_id, instance_url) for i in result.errors],
            warnings=[self.format_issue(i, source_org_id, instance_url) for i in result.warnings],
            info=[self.format_issue(i, source_org_id, instance_url) for i in result.info],
        )

    def format_message(self, issue: ValidationIssue) -> str:
        """Rewrite an issue message using its context where available."""
        check_name = issue.check_name
        context = issue.context

        if context is not None and context.target_object:
            target_type = object_label(context.target_object)
            source_type = context.source_record_type or "Record"
            referrer = f"{source_type} (name: '{issue.record_name}')"

            if context.missing_target_name and context.missing_target_external_id:
                return (
                    f"{target_type} (name: {context.missing_target_name}, external id: "
                    f"{context.missing_target_external_id}) is missing from target org "
                    f"referenced by {referrer}"
                )
            if context.missing_target_external_id:
                return (
                    f"{target_type} (external id: {context.missing_target_external_id}) "
                    f"is missing from target org referenced by {referrer}"
                )
            reference = self._first_quoted(issue.message) or "null"
            return (
                f"{target_type} '{reference}' referenced by '{issue.record_name}' "
                "doesn't exist in target org."
            )

        if check_name.startswith(PICKLIST_CHECK_PREFIX) or (
            context is not None and context.invalid_values
        ):
            invalid_match = _INVALID_VALUES.search(issue.message)
            valid_match = _VALID_VALUES.search(issue.message)
            invalid = invalid_match.group(1).strip() if invalid_match else "unknown value"
            valid = (
                valid_match.group(1).strip() if valid_match else "check target org configuration"
            )
            return f"Invalid value '{invalid}'. Valid options: {valid}"

        if issue.record_id and issue.record_name:
            return f"{issue.record_name} ({issue.record_id})"
        if issue.record_id:
            return f"{self.CHECK_OBJECT_TYPES.get(check_name, 'Record')} {issue.record_id}"

        if "ExternalIdValidation" in check_name:
            match = _FOUND_COUNT.search(issue.message)
            count = match.group(1) if match else "1"
            object_type = self.CHECK_OBJECT_TYPES.get(check_name, "Record").lower()
            return f"{_plural(count, object_type)} missing external IDs."

        if len(issue.message) > 100:
            simplified = re.sub(r"Migration cannot proceed: ", "", issue.message, flags=re.I)
            simplified = re.sub(r"All referenced .+ must .+ first", "", simplified, flags=re.I)
            return re.sub(r"\. All .+$", ".", simplified, flags=re.I).strip()

        return issue.message

    @staticmethod
    def _first_quoted(message: str) -> str | None:
        match = _QUOTED.search(message)
        return match.group(1) if match else None

    def get_suggested_action(self, issue: ValidationIssue) -> str:
        """Suggested remediation for an unformatted issue."""
        check_name = issue.check_name
        if check_name in self.SUGGESTED_ACTIONS:
            return self.SUGGESTED_ACTIONS[check_name]
        if "ExternalIdValidation" in check_name:
            return "Populate external IDs before migration."
        if check_name.startswith(PICKLIST_CHECK_PREFIX):
            return "Add missing picklist value in target org."

        title = self.ERROR_TITLES.get(check_name, "")
        if title.startswith("Missing"):
            return "Ensure the referenced record exists in the target org."
        if "Missing Required Fields" in title:
            return "Populate all required fields before migration."

        return issue.suggested_action or DEFAULT_SUGGESTED_ACTION

    @staticmethod
    def group_issues(issues: list[ValidationIssue]) -> dict[str, list[ValidationIssue]]:
        """Group issues by check name, keeping first-seen order."""
        grouped: dict[str, list[ValidationIssue]] = {}
        for issue in issues:
            grouped.setdefault(issue.check_name, []).append(issue)
        return grouped

    @staticmethod
    def summarize_group(group_name: str, issues: list[ValidationIssue]) -> str:
        """One-line group summary.

        Example: ``Missing Pay Code Reference (3 issues) - 2 records to review``
        """
        summary = f"{group_name} ({_plural(len(issues), 'issue')})"
        with_records = sum(1 for issue in issues if issue.record_id)
        if with_records:
            summary += f" - {_plural(with_records, 'record')} to review"
        return summary
