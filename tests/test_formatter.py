"""Tests for validation issue formatting and result models."""

import pytest

from crm_migration.validation.formatter import (
    DEFAULT_SUGGESTED_ACTION,
    ValidationFormatter,
    object_label,
)
from crm_migration.validation.models import (
    IssueContext,
    Severity,
    ValidationIssue,
    ValidationResult,
)

URL = "https://source.example.com"


@pytest.fixture
def formatter() -> ValidationFormatter:
    return ValidationFormatter()


def issue(check_name: str = "payCodeExists", message: str = "failed", **kwargs) -> ValidationIssue:
    severity = kwargs.pop("severity", Severity.ERROR)
    return ValidationIssue(check_name=check_name, message=message, severity=severity, **kwargs)


@pytest.mark.parametrize(
    ("api_name", "label"),
    [
        ("tc9_pr__Pay_Code__c", "Pay Code"),
        ("tc9_et__Interpretation_Rule__r", "Interpretation Rule"),
        ("Account", "Account"),
        ("Leave_Rule__c", "Leave Rule"),
    ],
)
def test_object_label(api_name, label):
    assert object_label(api_name) == label


class TestTitles:
    def test_known_check(self, formatter):
        assert formatter.get_title("payCodeExists") == "Missing Pay Code Reference"

    def test_picklist_check(self, formatter):
        assert formatter.get_title("picklistValidation_tc9_pr__Type__c") == "Invalid Type Values"

    def test_unknown_check_expanded(self, formatter):
        assert formatter.get_title("leaveAccrualOverlap") == "Leave Accrual Overlap"


class TestFormatIssue:
    def test_named_missing_target(self, formatter):
        formatted = formatter.format_issue(
            issue(
                record_id="a01",
                record_name="Rule A",
                suggested_action="Migrate the pay code first.",
                context=IssueContext(
                    source_value="EXT1",
                    target_object="tc9_pr__Pay_Code__c",
                    missing_target_name="Overtime",
                    missing_target_external_id="EXT1",
                    source_record_type="Interpretation Rule",
                ),
            ),
            "source",
            URL,
        )

        assert formatted.check_name == "Missing Pay Code Reference"
        assert formatted.message == (
            "Pay Code (name: Overtime, external id: EXT1) is missing from target org "
            "referenced by Interpretation Rule (name: 'Rule A')"
        )
        assert formatted.record_link == f"{URL}/a01"
        assert formatted.suggested_action is None
        assert formatted.severity == Severity.ERROR

    def test_external_id_only(self, formatter):
        formatted = formatter.format_issue(
            issue(
                record_name="Rule A",
                context=IssueContext(
                    target_object="tc9_pr__Pay_Code__c", missing_target_external_id="EXT1"
                ),
            ),
            "source",
        )

        assert formatted.message == (
            "Pay Code (external id: EXT1) is missing from target org "
            "referenced by Record (name: 'Rule A')"
        )
        assert formatted.record_link is None

    def test_input_not_modified(self, formatter):
        original = issue(record_id="a01", suggested_action="Fix it.")

        formatter.format_issue(original, "source", URL)

        assert original.check_name == "payCodeExists"
        assert original.suggested_action == "Fix it."

    def test_picklist_message(self, formatter):
        formatted = formatter.format_issue(
            issue(
                check_name="picklistValidation_Type__c",
                message="Invalid picklist values found for Type__c: C, D. Valid values are: A, B",
                context=IssueContext(invalid_values=["C", "D"], valid_values=["A", "B"]),
            ),
            "source",
        )

        assert formatted.message == "Invalid value 'C, D'. Valid options: A, B"

    def test_external_id_count_message(self, formatter):
        formatted = formatter.format_issue(
            issue(
                check_name="sourcePayCodeExternalIdValidation",
                message="Found pay codes without external ID values (Found 3 records)",
            ),
            "source",
        )

        assert formatted.message == "3 pay codes missing external IDs."

    def test_record_issue_message(self, formatter):
        formatted = formatter.format_issue(
            issue(check_name="breakpointIntegrity", record_id="a09", record_name="BP-1"),
            "source",
        )

        assert formatted.message == "BP-1 (a09)"

    def test_long_message_simplified(self, formatter):
        message = (
            "Migration cannot proceed: Found duplicate pay code codes in the source org. "
            "All duplicates must be merged before the pay codes can be migrated"
        )

        formatted = formatter.format_issue(issue("uniqueCodeValidation", message), "source")

        assert formatted.message == "Found duplicate pay code codes in the source org."

    def test_format_result_keeps_buckets(self, formatter):
        result = ValidationResult.from_issues(
            [issue(), issue(severity=Severity.WARNING), issue(severity=Severity.INFO)]
        )

        formatted = formatter.format_result(result, "source", URL)

        assert [len(formatted.errors), len(formatted.warnings), len(formatted.info)] == [1, 1, 1]


class TestSuggestedActions:
    @pytest.mark.parametrize(
        ("check_name", "action"),
        [
            ("orgConnectivity", "Reconnect to the organisation."),
            ("sourceLeaveRuleExternalIdValidation", "Populate external IDs before migration."),
            ("picklistValidation_Type__c", "Add missing picklist value in target org."),
            ("leaveRuleExists", "Ensure the referenced record exists in the target org."),
            ("breakpointIntegrity", "Populate all required fields before migration."),
            ("somethingElse", DEFAULT_SUGGESTED_ACTION),
        ],
    )
    def test_lookup(self, formatter, check_name, action):
        assert formatter.get_suggested_action(issue(check_name=check_name)) == action

    def test_issue_action_used_when_no_rule_matches(self, formatter):
        assert formatter.get_suggested_action(issue("custom", suggested_action="Call Bob.")) == (
            "Call Bob."
        )


class TestGrouping:
    def test_group_and_summarize(self, formatter):
        issues = [
            issue("a", record_id="1"),
            issue("b"),
            issue("a", record_id="2"),
            issue("a"),
        ]

        groups = formatter.group_issues(issues)

        assert list(groups) == ["a", "b"]
        assert formatter.summarize_group("a", groups["a"]) == "a (3 issues) - 2 records to review"
        assert formatter.summarize_group("b", groups["b"]) == "b (1 issue)"


class TestValidationResult:
    def test_summary_recomputed_from_lists(self):
        result = ValidationResult()
        result.add_issue(issue())
        result.add_issue(issue(severity=Severity.WARNING))
        result.add_issue(issue(severity=Severity.INFO))

        assert result.is_valid is False
        assert result.summary.to_dict() == {
            "total_checks": 3,
            "passed_checks": 1,
            "failed_checks": 1,
            "warning_checks": 1,
        }

        result.errors.clear()
        assert result.is_valid is True
        assert result.summary.failed_checks == 0

    def test_merge_concatenates(self):
        first = ValidationResult.from_issues([issue("a")])
        second = ValidationResult.from_issues([issue("b"), issue("c", severity=Severity.WARNING)])

        first.merge(second)

        assert [i.check_name for i in first.all_issues] == ["a", "b", "c"]

    def test_to_dict_drops_empty_optionals(self):
        data = ValidationResult.from_issues(
            [issue(context=IssueContext(invalid_values=["C"]))]
        ).to_dict()

        assert data["is_valid"] is False
        assert data["errors"][0] == {
            "check_name": "payCodeExists",
            "message": "failed",
            "severity": "error",
            "record_id": None,
            "record_name": None,
            "context": {"invalid_values": ["C"]},
        }
