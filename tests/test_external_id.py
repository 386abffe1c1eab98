"""Tests for external ID field detection and cross-environment mapping."""

import pytest

from crm_migration.config import (
    DEFAULT_FALLBACK_EXTERNAL_ID_FIELD,
    DEFAULT_MANAGED_EXTERNAL_ID_FIELD,
    DEFAULT_UNMANAGED_EXTERNAL_ID_FIELD,
    ExternalIdSettings,
)
from crm_migration.external_id import (
    EnvironmentExternalIdInfo,
    ExternalIdResolver,
    is_external_id_field,
)
from crm_migration.templates.models import CrossEnvironmentMapping, ExternalIdHandlingConfig

PAY_CODE = "tc9_pr__Pay_Code__c"


@pytest.fixture
def resolver() -> ExternalIdResolver:
    return ExternalIdResolver()


def managed() -> EnvironmentExternalIdInfo:
    return EnvironmentExternalIdInfo(
        "managed", DEFAULT_MANAGED_EXTERNAL_ID_FIELD, [DEFAULT_MANAGED_EXTERNAL_ID_FIELD]
    )


def unmanaged() -> EnvironmentExternalIdInfo:
    return EnvironmentExternalIdInfo(
        "unmanaged", DEFAULT_UNMANAGED_EXTERNAL_ID_FIELD, [DEFAULT_UNMANAGED_EXTERNAL_ID_FIELD]
    )


class TestDetection:
    async def test_managed_field_preferred(self, resolver, source):
        source.add_object(
            PAY_CODE,
            fields=["Id", DEFAULT_UNMANAGED_EXTERNAL_ID_FIELD, DEFAULT_MANAGED_EXTERNAL_ID_FIELD],
        )

        info = await resolver.detect_environment_info(source, PAY_CODE)

        assert info.package_kind == "managed"
        assert info.external_id_field == DEFAULT_MANAGED_EXTERNAL_ID_FIELD
        assert info.fallback_used is False
        assert info.detected_fields == [
            DEFAULT_MANAGED_EXTERNAL_ID_FIELD,
            DEFAULT_UNMANAGED_EXTERNAL_ID_FIELD,
        ]

    async def test_unmanaged_field(self, resolver, source):
        source.add_object(PAY_CODE, fields=["Id", DEFAULT_UNMANAGED_EXTERNAL_ID_FIELD])

        info = await resolver.detect_environment_info(source, PAY_CODE)

        assert info.package_kind == "unmanaged"
        assert info.external_id_field == DEFAULT_UNMANAGED_EXTERNAL_ID_FIELD
        assert info.fallback_used is False

    async def test_generic_fallback(self, resolver, source):
        source.add_object(PAY_CODE, fields=["Id", DEFAULT_FALLBACK_EXTERNAL_ID_FIELD])

        info = await resolver.detect_environment_info(source, PAY_CODE)

        assert info.external_id_field == DEFAULT_FALLBACK_EXTERNAL_ID_FIELD
        assert info.fallback_used is True

    async def test_field_names_compared_case_insensitively(self, resolver, source):
        source.add_object(PAY_CODE, fields=[DEFAULT_MANAGED_EXTERNAL_ID_FIELD.lower()])

        assert await resolver.detect_external_id_field(source, PAY_CODE) == (
            DEFAULT_MANAGED_EXTERNAL_ID_FIELD
        )

    async def test_describe_failure_assumes_managed(self, resolver, source):
        info = await resolver.detect_environment_info(source, "Unknown__c")

        assert info.package_kind == "managed"
        assert info.external_id_field == DEFAULT_MANAGED_EXTERNAL_ID_FIELD
        assert info.fallback_used is True

    async def test_no_candidate_defaults_to_managed_field(self, resolver, source):
        source.add_object(PAY_CODE, fields=["Id", "Name"])

        assert await resolver.detect_external_id_field(source, PAY_CODE) == (
            DEFAULT_MANAGED_EXTERNAL_ID_FIELD
        )

    async def test_custom_field_names(self, source):
        resolver = ExternalIdResolver(
            ExternalIdSettings(managed_field="ns__Key__c", unmanaged_field="Key__c")
        )
        source.add_object(PAY_CODE, fields=["Key__c"])

        info = await resolver.detect_environment_info(source, PAY_CODE)

        assert info.external_id_field == "Key__c"
        assert resolver.get_all_possible_external_id_fields() == [
            "ns__Key__c",
            "Key__c",
            DEFAULT_FALLBACK_EXTERNAL_ID_FIELD,
        ]


class TestCrossEnvironment:
    def test_same_package_kind_is_auto_detect(self, resolver):
        config = resolver.detect_cross_environment_mapping(managed(), managed())

        assert config.strategy == "auto-detect"
        assert config.source_field == config.target_field == DEFAULT_MANAGED_EXTERNAL_ID_FIELD
        assert config.cross_environment_mapping is None

    def test_different_package_kinds(self, resolver):
        config = resolver.detect_cross_environment_mapping(managed(), unmanaged())

        assert config.strategy == "cross-environment"
        assert config.source_field == DEFAULT_MANAGED_EXTERNAL_ID_FIELD
        assert config.target_field == DEFAULT_UNMANAGED_EXTERNAL_ID_FIELD
        assert config.cross_environment_mapping == CrossEnvironmentMapping(
            source_package_type="managed", target_package_type="unmanaged"
        )

    def test_query_rewritten_with_source_field_only(self, resolver):
        query = resolver.build_cross_environment_query(
            "SELECT {externalIdField}, R__r.{externalIdField} FROM Obj", "Ext_Src__c", "Ext_Tgt__c"
        )

        assert query == "SELECT Ext_Src__c, R__r.Ext_Src__c FROM Obj"
        assert "Ext_Tgt__c" not in query

    def test_compatibility_reports_cross_environment(self, resolver):
        result = resolver.validate_cross_environment_compatibility(managed(), unmanaged())

        assert result.cross_environment_detected is True
        assert result.potential_issues
        assert result.recommendations
        assert any(issue.severity == "info" for issue in result.potential_issues)

    def test_compatibility_reports_fallback_and_missing_fields(self, resolver):
        source = EnvironmentExternalIdInfo(
            "managed", DEFAULT_MANAGED_EXTERNAL_ID_FIELD, [], fallback_used=True
        )

        result = resolver.validate_cross_environment_compatibility(source, managed())

        assert result.cross_environment_detected is False
        messages = [issue.message for issue in result.potential_issues]
        assert any("Source environment is using fallback" in m for m in messages)
        assert "No external ID fields detected in source environment" in messages
        assert result.recommendations == []

    def test_compatible_environments_have_no_issues(self, resolver):
        result = resolver.validate_cross_environment_compatibility(managed(), managed())

        assert result.potential_issues == []


class TestConfigHelpers:
    @pytest.mark.parametrize(
        ("strategy", "expected"),
        [("manual", "Src__c"), ("cross-environment", "Src__c"), ("auto-detect", "Detected__c")],
    )
    def test_get_external_id_field(self, resolver, strategy, expected):
        config = ExternalIdHandlingConfig(
            source_field="Src__c", target_field="Tgt__c", strategy=strategy
        )

        assert resolver.get_external_id_field(config, "Detected__c") == expected

    def test_target_side_uses_target_field(self, resolver):
        manual = ExternalIdHandlingConfig(source_field="Src__c", strategy="manual")
        cross = ExternalIdHandlingConfig(target_field="Tgt__c", strategy="cross-environment")

        assert resolver.get_external_id_field(manual, side="target") == "Src__c"
        assert resolver.get_external_id_field(cross, "Detected__c", side="target") == "Tgt__c"
        assert resolver.get_external_id_field(cross, "Detected__c") == "Detected__c"

    def test_auto_detect_without_detection_uses_fallback(self, resolver):
        config = ExternalIdHandlingConfig()

        assert resolver.get_external_id_field(config) == DEFAULT_FALLBACK_EXTERNAL_ID_FIELD

    def test_validate_config(self, resolver):
        assert resolver.validate_config(ExternalIdHandlingConfig()) == []

        errors = resolver.validate_config(
            ExternalIdHandlingConfig(
                managed_field="bad field", source_field="Src c", strategy="cross-environment"
            )
        )
        assert "Managed field 'bad field' is not a valid field name" in errors
        assert "Source field 'Src c' is not a valid field name" in errors
        assert "Cross-environment strategy requires a cross environment mapping" in errors

    def test_manual_strategy_requires_a_field(self, resolver):
        errors = resolver.validate_config(ExternalIdHandlingConfig(strategy="manual"))

        assert errors == ["Manual strategy requires a source or target field"]

    def test_extract_external_id_value_tries_every_candidate(self, resolver):
        record = {"Pay_Code__r": {DEFAULT_UNMANAGED_EXTERNAL_ID_FIELD: "PC-1"}}

        assert resolver.extract_external_id_value(record, "Pay_Code__r", "Other__c") == "PC-1"
        assert resolver.extract_external_id_value({}, "Pay_Code__r", "Other__c") is None

    def test_extract_external_id_value_distinguishes_null_from_absent(self, resolver):
        null_value = {"Pay_Code__r": {DEFAULT_MANAGED_EXTERNAL_ID_FIELD: None}}

        assert resolver.extract_external_id_value(null_value, "Pay_Code__r", "Other__c") is None
        with pytest.raises(KeyError):
            resolver.extract_external_id_value({"Pay_Code__r": {"Name": "OT"}}, "Pay_Code__r", "X")

    def test_extract_external_id_value_from_record_itself(self, resolver):
        record = {DEFAULT_MANAGED_EXTERNAL_ID_FIELD: "PC-2"}

        assert resolver.extract_external_id_value(record, None, "Other__c") == "PC-2"


@pytest.mark.parametrize(
    ("field_name", "expected"),
    [
        (DEFAULT_MANAGED_EXTERNAL_ID_FIELD, True),
        ("External_Id__c", True),
        ("Rel__r.External_ID__c", True),
        ("tc9_pr__Code__c", False),
    ],
)
def test_is_external_id_field(field_name, expected):
    assert is_external_id_field(field_name) is expected
