"""Tests for template models, YAML loading and the template registry."""

import pytest
import yaml
from pydantic import ValidationError

from crm_migration.client.exceptions import TemplateError
from crm_migration.templates.definitions import (
    BUILTIN_TEMPLATES,
    INTERPRETATION_RULES_TEMPLATE,
    PAY_CODES_TEMPLATE,
)
from crm_migration.templates.models import ETLStep, MigrationTemplate, PicklistValidationCheck
from crm_migration.templates.registry import (
    TemplateRegistry,
    create_default_registry,
    load_template_from_yaml,
    validate_template_structure,
)


def step_data(name: str, order: int = 1, dependencies: list[str] | None = None) -> dict:
    return {
        "stepName": name,
        "stepOrder": order,
        "extractConfig": {"soqlQuery": "SELECT Id FROM Obj__c", "objectApiName": "Obj__c"},
        "loadConfig": {"targetObject": "Obj__c"},
        "dependencies": dependencies or [],
    }


def template_data(**overrides) -> dict:
    data = {
        "id": "custom-objects",
        "name": "Custom Objects",
        "description": "Moves custom objects",
        "etlSteps": [step_data("first", 1), step_data("second", 2, ["first"])],
        "executionOrder": ["first", "second"],
    }
    data.update(overrides)
    return data


class TestModels:
    def test_camel_case_aliases(self):
        template = MigrationTemplate.model_validate(template_data())

        step = template.etl_steps[0]
        assert step.extract_config.soql_query == "SELECT Id FROM Obj__c"
        assert step.load_config.operation == "upsert"
        assert step.load_config.external_id_field == "{externalIdField}"
        assert step.transform_config.external_id_handling.strategy == "auto-detect"

    def test_snake_case_names_accepted(self):
        step = ETLStep(
            step_name="s",
            step_order=0,
            extract_config={"soql_query": "SELECT Id FROM A", "object_api_name": "A"},
            load_config={"target_object": "A"},
        )

        assert step.extract_config.object_api_name == "A"

    def test_unknown_keys_rejected(self):
        data = template_data()
        data["etlSteps"][0]["mystery"] = True

        with pytest.raises(ValidationError):
            MigrationTemplate.model_validate(data)

    def test_dependencies_deduplicated(self):
        data = template_data()
        data["etlSteps"][1]["dependencies"] = ["first", "first"]

        template = MigrationTemplate.model_validate(data)

        assert template.etl_steps[1].dependencies == ["first"]

    @pytest.mark.parametrize(
        ("overrides", "message"),
        [
            ({"etlSteps": [step_data("a"), step_data("a")]}, "Duplicate step names: a"),
            ({"executionOrder": ["first", "first"]}, "more than once"),
            ({"executionOrder": ["first", "missing"]}, "unknown steps: missing"),
            ({"etlSteps": [step_data("first", 1, ["first"])]}, "depends on itself"),
            ({"etlSteps": [step_data("first", 1, ["not a step!"])]}, "unresolvable dependency"),
            ({"etlSteps": [step_data("first", 1, ["payCode"])]}, "unresolvable dependency"),
        ],
    )
    def test_execution_order_validation(self, overrides, message):
        data = template_data(**overrides)
        if "executionOrder" not in overrides:
            data["executionOrder"] = [s["stepName"] for s in data["etlSteps"]][:1]

        with pytest.raises(ValidationError, match=message):
            MigrationTemplate.model_validate(data)

    def test_object_dependencies_allowed(self):
        data = template_data(etlSteps=[step_data("first", 1, ["tc9_pr__Pay_Code__c"])])
        data["executionOrder"] = ["first"]

        template = MigrationTemplate.model_validate(data)

        assert template.etl_steps[0].dependencies == ["tc9_pr__Pay_Code__c"]

    def test_standard_object_dependencies_allowed(self):
        data = template_data(etlSteps=[step_data("first", 1, ["Account"])])
        data["executionOrder"] = ["first"]

        assert MigrationTemplate.model_validate(data).etl_steps[0].dependencies == ["Account"]

    def test_ordered_steps_follow_stored_order(self):
        data = template_data(
            etlSteps=[step_data("a", 3), step_data("b", 1), step_data("c", 2), step_data("d", 0)],
            executionOrder=["c", "a"],
        )

        template = MigrationTemplate.model_validate(data)

        assert [step.step_name for step in template.ordered_steps()] == ["c", "a", "d", "b"]
        assert template.get_step("b").step_order == 1
        assert template.get_step("zzz") is None

    def test_picklist_target_defaults(self):
        check = PicklistValidationCheck(
            check_name="picklistValidation_Type__c", field_name="Type__c", object_name="Obj__c"
        )

        assert check.resolved_target_object == "Obj__c"
        assert check.resolved_target_field == "Type__c"


class TestStructureValidation:
    @pytest.mark.parametrize("template", BUILTIN_TEMPLATES, ids=lambda t: t.id)
    def test_builtins_are_valid(self, template):
        assert validate_template_structure(template) == []

    def test_reports_unordered_and_out_of_order_steps(self):
        data = template_data(
            etlSteps=[step_data("first", 1), step_data("second", 2, ["first"]), step_data("x")],
            executionOrder=["second", "first"],
        )

        errors = validate_template_structure(MigrationTemplate.model_validate(data))

        assert "Steps missing from execution order: x" in errors
        assert "Step 'second' runs before its dependency 'first'" in errors

    def test_reports_unknown_cache_key(self):
        data = template_data()
        data["etlSteps"][0]["validationConfig"] = {
            "dependencyChecks": [
                {
                    "checkName": "refExists",
                    "sourceField": "Ref__c",
                    "targetObject": "Obj__c",
                    "targetField": "Id",
                    "errorMessage": "missing",
                    "cacheKey": "nowhere",
                }
            ]
        }

        errors = validate_template_structure(MigrationTemplate.model_validate(data))

        assert errors == ["Dependency check 'refExists' uses unknown cache key 'nowhere'"]

    def test_reports_incomplete_external_id_handling(self):
        data = template_data()
        data["etlSteps"][0]["transformConfig"] = {"externalIdHandling": {"strategy": "manual"}}

        errors = validate_template_structure(MigrationTemplate.model_validate(data))

        assert errors == [
            "Step 'first' external ID handling: Manual strategy requires a source or target field"
        ]

    def test_empty_template(self):
        template = MigrationTemplate(id="", name="", etl_steps=[], execution_order=[])

        assert validate_template_structure(template) == [
            "Template ID is required",
            "Template name is required",
            "Template must have at least one ETL step",
            "Template must define execution order",
        ]


class TestYamlLoading:
    def test_load(self, tmp_path):
        path = tmp_path / "custom.yaml"
        path.write_text(yaml.safe_dump(template_data()))

        template = load_template_from_yaml(path)

        assert template.id == "custom-objects"
        assert [s.step_name for s in template.ordered_steps()] == ["first", "second"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(TemplateError, match="Template file not found"):
            load_template_from_yaml(tmp_path / "absent.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("id: [unclosed\n")

        with pytest.raises(TemplateError, match="Invalid YAML"):
            load_template_from_yaml(path)

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- one\n- two\n")

        with pytest.raises(TemplateError, match="must contain a mapping"):
            load_template_from_yaml(path)

    def test_invalid_template(self, tmp_path):
        path = tmp_path / "invalid.yaml"
        path.write_text(yaml.safe_dump({"id": "x", "name": "X"}))

        with pytest.raises(TemplateError, match="Invalid template"):
            load_template_from_yaml(path)


class TestRegistry:
    def test_default_registry_holds_builtins(self):
        registry = create_default_registry()

        assert registry.get_template_ids() == [
            PAY_CODES_TEMPLATE.id,
            INTERPRETATION_RULES_TEMPLATE.id,
        ]
        assert registry.count() == 2

    def test_queries(self):
        registry = create_default_registry()

        assert registry.get_by_category("payroll") == BUILTIN_TEMPLATES
        assert registry.get_by_category("time") == []
        assert registry.get_by_complexity("complex") == [INTERPRETATION_RULES_TEMPLATE]
        assert registry.search("BREAKPOINTS") == [INTERPRETATION_RULES_TEMPLATE]
        assert registry.has_template(PAY_CODES_TEMPLATE.id)

    def test_register_replace_and_remove(self):
        registry = TemplateRegistry()
        registry.register(PAY_CODES_TEMPLATE)
        registry.register(PAY_CODES_TEMPLATE)

        assert registry.count() == 1
        assert registry.remove(PAY_CODES_TEMPLATE.id) is True
        assert registry.remove(PAY_CODES_TEMPLATE.id) is False

        registry.register(PAY_CODES_TEMPLATE)
        registry.clear()
        assert registry.list_templates() == []

    def test_load_directory(self, tmp_path):
        (tmp_path / "custom.yml").write_text(yaml.safe_dump(template_data()))
        (tmp_path / "notes.txt").write_text("ignored")

        registry = create_default_registry(tmp_path)

        assert registry.count() == 3
        assert registry.get("custom-objects").name == "Custom Objects"

    def test_missing_directory_loads_nothing(self, tmp_path):
        assert TemplateRegistry().load_directory(tmp_path / "absent") == 0

    def test_resolve_by_id_and_path(self, tmp_path):
        registry = create_default_registry()
        path = tmp_path / "custom.yaml"
        path.write_text(yaml.safe_dump(template_data()))

        assert registry.resolve(PAY_CODES_TEMPLATE.id) is PAY_CODES_TEMPLATE
        assert registry.resolve(str(path)).id == "custom-objects"

    def test_resolve_unknown(self):
        with pytest.raises(TemplateError, match="Available templates: payroll-"):
            create_default_registry().resolve("nope")
