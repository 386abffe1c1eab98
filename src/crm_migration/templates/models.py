"""Declarative migration template models.

A template is pure configuration: an ordered list of ETL steps, each with
extract/transform/load settings and an optional validation configuration.
Field names are snake_case; the camelCase names used by exported template
JSON (``etlSteps``, ``soqlQuery``...) are accepted as aliases.
"""

import re
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from crm_migration.config import (
    DEFAULT_FALLBACK_EXTERNAL_ID_FIELD,
    DEFAULT_MANAGED_EXTERNAL_ID_FIELD,
    DEFAULT_UNMANAGED_EXTERNAL_ID_FIELD,
)

SeverityLevel = Literal["error", "warning", "info"]
PackageKind = Literal["managed", "unmanaged"]
ExternalIdStrategy = Literal["auto-detect", "manual", "cross-environment"]

# Dependencies outside the template must name an object already in the target org
_CUSTOM_OBJECT_NAME = re.compile(r"^[a-zA-Z][a-zA-Z0-9_]*__c$")
STANDARD_OBJECTS = frozenset(
    {"Account", "Contact", "User", "RecordType", "Opportunity", "Lead", "Case", "Product2"}
)


def is_object_dependency(name: str) -> bool:
    """True when a dependency names a custom or standard object rather than a step."""
    return bool(_CUSTOM_OBJECT_NAME.match(name)) or name in STANDARD_OBJECTS


class TemplateModel(BaseModel):
    """Base class for template configuration models."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )


class FieldValidationRule(TemplateModel):
    """Free-form rule attached to a field mapping."""

    rule: str
    message: str


class FieldMapping(TemplateModel):
    """Copy of one source field into one target field."""

    source_field: str
    target_field: str
    is_required: bool = False
    transformation_type: Literal[
        "direct", "lookup", "formula", "custom", "boolean", "number", "picklist"
    ] = "direct"
    transformation_config: dict[str, Any] = Field(default_factory=dict)
    validation_rules: list[FieldValidationRule] = Field(default_factory=list)


class LookupMapping(TemplateModel):
    """Resolution of a source reference into a target reference.

    ``allow_null`` permits an unresolved lookup to load as null, which is
    needed for self-referential fields whose targets do not exist yet.
    """

    source_field: str
    target_field: str
    lookup_object: str
    lookup_key_field: str
    lookup_value_field: str
    cache_results: bool = True
    fallback_value: str | None = None
    source_external_id_field: str | None = None
    target_external_id_field: str | None = None
    cross_environment_mapping: bool = False
    allow_null: bool = False


class RecordTypeMapping(TemplateModel):
    """Source record type label to target placeholder, resolved at load time."""

    source_field: str
    target_field: str
    mapping_dictionary: dict[str, str] = Field(default_factory=dict)


class CrossEnvironmentMapping(TemplateModel):
    """Package kinds on each side of a cross-environment migration."""

    source_package_type: PackageKind
    target_package_type: PackageKind


class ExternalIdHandlingConfig(TemplateModel):
    """Which field acts as the durable cross-org identity key."""

    source_field: str | None = None
    target_field: str | None = None
    managed_field: str = DEFAULT_MANAGED_EXTERNAL_ID_FIELD
    unmanaged_field: str = DEFAULT_UNMANAGED_EXTERNAL_ID_FIELD
    fallback_field: str = DEFAULT_FALLBACK_EXTERNAL_ID_FIELD
    strategy: ExternalIdStrategy = "auto-detect"
    cross_environment_mapping: CrossEnvironmentMapping | None = None

    @property
    def candidate_fields(self) -> list[str]:
        """Candidate fields in detection priority order."""
        return [self.managed_field, self.unmanaged_field, self.fallback_field]


class ConditionalTransform(TemplateModel):
    """Transformation applied when a condition holds."""

    condition: str
    transformation: str


class ExtractConfig(TemplateModel):
    """Source extraction query for a step."""

    soql_query: str
    object_api_name: str
    filter_criteria: str | None = None
    order_by: str | None = None
    batch_size: int = Field(default=200, ge=1, le=50000)


class TransformConfig(TemplateModel):
    """Field, lookup and record type mappings for a step."""

    field_mappings: list[FieldMapping] = Field(default_factory=list)
    lookup_mappings: list[LookupMapping] = Field(default_factory=list)
    record_type_mapping: RecordTypeMapping | None = None
    conditional_logic: list[ConditionalTransform] = Field(default_factory=list)
    external_id_handling: ExternalIdHandlingConfig = Field(
        default_factory=ExternalIdHandlingConfig
    )


class RetryConfig(TemplateModel):
    """Load-phase retry policy."""

    max_retries: int = Field(default=3, ge=0, le=10)
    retry_wait_seconds: int = Field(default=1, ge=0)
    retryable_errors: list[str] = Field(default_factory=list)


class LoadConfig(TemplateModel):
    """How transformed records are written to the target org."""

    target_object: str
    operation: Literal["insert", "update", "upsert"] = "upsert"
    external_id_field: str = "{externalIdField}"
    use_bulk_api: bool = True
    batch_size: int = Field(default=200, ge=1, le=10000)
    allow_partial_success: bool = False
    retry_config: RetryConfig = Field(default_factory=RetryConfig)


class PreValidationQuery(TemplateModel):
    """Target-side query whose rows are cached under ``cache_key`` for the run."""

    query_name: str
    soql_query: str
    cache_key: str
    description: str = ""


class DependencyCheck(TemplateModel):
    """Assertion that every source reference exists in the target org.

    ``error_message`` and ``warning_message`` may use the ``{sourceValue}``
    and ``{recordName}`` tokens. When ``cache_key`` is omitted the engine
    uses the pre-validation query that reads ``target_object``.
    """

    check_name: str
    description: str = ""
    source_field: str
    target_object: str
    target_field: str
    is_required: bool = True
    error_message: str
    warning_message: str | None = None
    cache_key: str | None = None


class DataIntegrityCheck(TemplateModel):
    """Arbitrary query-based assertion against the source org."""

    check_name: str
    description: str = ""
    validation_query: str
    expected_result: Literal["empty", "non-empty", "count-match"] = "empty"
    error_message: str
    severity: SeverityLevel = "error"


class PicklistValidationCheck(TemplateModel):
    """Validation of enumerated source values against allowed values.

    ``target_object``/``target_field`` default to ``object_name``/``field_name``.
    """

    check_name: str
    description: str = ""
    field_name: str
    object_name: str
    validate_against_target: bool = True
    allowed_values: list[str] | None = None
    cross_environment_mapping: bool = False
    error_message: str = ""
    severity: SeverityLevel = "error"
    target_object: str | None = None
    target_field: str | None = None

    @property
    def resolved_target_object(self) -> str:
        return self.target_object or self.object_name

    @property
    def resolved_target_field(self) -> str:
        return self.target_field or self.field_name


class ValidationConfig(TemplateModel):
    """Pre-flight checks for a step.

    ``picklist_validation_checks`` left as None makes the engine derive
    picklist checks from the step's direct field mappings.
    """

    pre_validation_queries: list[PreValidationQuery] = Field(default_factory=list)
    dependency_checks: list[DependencyCheck] = Field(default_factory=list)
    data_integrity_checks: list[DataIntegrityCheck] = Field(default_factory=list)
    picklist_validation_checks: list[PicklistValidationCheck] | None = None


class ETLStep(TemplateModel):
    """One extract-transform-load step of a template."""

    step_name: str
    step_order: int = Field(..., ge=0)
    extract_config: ExtractConfig
    transform_config: TransformConfig = Field(default_factory=TransformConfig)
    load_config: LoadConfig
    validation_config: ValidationConfig | None = None
    dependencies: list[str] = Field(default_factory=list)

    @field_validator("dependencies")
    @classmethod
    def validate_unique_dependencies(cls, v: list[str]) -> list[str]:
        """Dependencies form a set; keep first occurrence order."""
        return list(dict.fromkeys(v))


class TemplateMetadata(TemplateModel):
    """Descriptive template metadata."""

    author: str = "Migration Tool"
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    supported_api_versions: list[str] = Field(default_factory=list)
    required_permissions: list[str] = Field(default_factory=list)
    estimated_duration: int = Field(default=5, ge=0, description="Minutes")
    complexity: Literal["simple", "moderate", "complex"] = "simple"


class MigrationTemplate(TemplateModel):
    """A named, versioned set of ETL steps with a stored execution order."""

    id: str
    name: str
    description: str = ""
    category: Literal["payroll", "time", "custom"] = "custom"
    version: str = "1.0.0"
    etl_steps: list[ETLStep]
    execution_order: list[str]
    metadata: TemplateMetadata = Field(default_factory=TemplateMetadata)

    @model_validator(mode="after")
    def validate_execution_order(self) -> "MigrationTemplate":
        """Check step names, execution order and dependency references."""
        step_names = [step.step_name for step in self.etl_steps]

        duplicates = sorted({name for name in step_names if step_names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate step names: {', '.join(duplicates)}")

        repeated = sorted(
            {name for name in self.execution_order if self.execution_order.count(name) > 1}
        )
        if repeated:
            raise ValueError(
                f"Steps listed more than once in execution order: {', '.join(repeated)}"
            )

        unknown = [name for name in self.execution_order if name not in step_names]
        if unknown:
            raise ValueError(f"Execution order names unknown steps: {', '.join(unknown)}")

        for step in self.etl_steps:
            for dependency in step.dependencies:
                if dependency == step.step_name:
                    raise ValueError(f"Step '{step.step_name}' depends on itself")
                if dependency not in step_names and not is_object_dependency(dependency):
                    raise ValueError(
                        f"Step '{step.step_name}' has unresolvable dependency '{dependency}'"
                    )

        return self

    def get_step(self, step_name: str) -> ETLStep | None:
        """Return the step with the given name, if any."""
        for step in self.etl_steps:
            if step.step_name == step_name:
                return step
        return None

    def ordered_steps(self) -> list[ETLStep]:
        """Steps in stored execution order.

        Steps missing from ``execution_order`` follow, sorted by ``step_order``.
        """
        by_name = {step.step_name: step for step in self.etl_steps}
        ordered = [by_name[name] for name in self.execution_order]
        remaining = sorted(
            (step for step in self.etl_steps if step.step_name not in self.execution_order),
            key=lambda step: step.step_order,
        )
        return ordered + remaining
