"""Built-in payroll migration templates."""

from crm_migration.templates.models import (
    DataIntegrityCheck,
    DependencyCheck,
    ETLStep,
    ExtractConfig,
    FieldMapping,
    LoadConfig,
    LookupMapping,
    MigrationTemplate,
    PicklistValidationCheck,
    PreValidationQuery,
    RecordTypeMapping,
    RetryConfig,
    TemplateMetadata,
    TransformConfig,
    ValidationConfig,
)

PAY_CODE_OBJECT = "tc9_pr__Pay_Code__c"
INTERPRETATION_RULE_OBJECT = "tc9_et__Interpretation_Rule__c"
BREAKPOINT_OBJECT = "tc9_et__Interpretation_Breakpoint__c"

RULE_RECORD_TYPES = [
    "Daily Rates",
    "Hourly Rates",
    "Interpretation Variation Rule",
    "Shift End Time",
    "Shift Start Time",
]

STANDARD_HOURS_FIELDS = [
    f"tc9_et__{day}_Standard_Hours__c"
    for day in (
        "Monday",
        "Tuesday",
        "Wednesday",
        "Thursday",
        "Friday",
        "Saturday",
        "Sunday",
        "Public_Holiday",
    )
]


def _identity_mappings() -> list[FieldMapping]:
    return [
        FieldMapping(source_field="Id", target_field="{externalIdField}", is_required=True),
        FieldMapping(source_field="Name", target_field="Name", is_required=True),
    ]


def _direct(*fields: str, transformation_type: str = "direct") -> list[FieldMapping]:
    return [
        FieldMapping(source_field=f, target_field=f, transformation_type=transformation_type)
        for f in fields
    ]


def _upsert(target_object: str, retry_wait_seconds: int = 30) -> LoadConfig:
    return LoadConfig(
        target_object=target_object,
        retry_config=RetryConfig(
            max_retries=3,
            retry_wait_seconds=retry_wait_seconds,
            retryable_errors=["UNABLE_TO_LOCK_ROW", "TIMEOUT"],
        ),
    )


def _record_type_mapping() -> RecordTypeMapping:
    return RecordTypeMapping(
        source_field="RecordType.Name",
        target_field="RecordTypeId",
        mapping_dictionary={name: "{targetRecordTypeId}" for name in RULE_RECORD_TYPES},
    )


def _target_pay_codes_query() -> PreValidationQuery:
    return PreValidationQuery(
        query_name="targetPayCodes",
        soql_query=f"SELECT Id, {{externalIdField}}, Name FROM {PAY_CODE_OBJECT}",
        cache_key="target_pay_codes",
        description="Cache all target org pay codes for validation",
    )


PAY_CODES_TEMPLATE = MigrationTemplate(
    id="payroll-pay-codes",
    name="Pay Codes",
    description="Migrate pay codes with essential validation",
    category="payroll",
    etl_steps=[
        ETLStep(
            step_name="payCodeMaster",
            step_order=1,
            extract_config=ExtractConfig(
                soql_query=(
                    "SELECT Id, Name, tc9_pr__Code__c, tc9_pr__Type__c, tc9_pr__Status__c, "
                    f"tc9_pr__Rate__c, {{externalIdField}} FROM {PAY_CODE_OBJECT}"
                ),
                object_api_name=PAY_CODE_OBJECT,
            ),
            transform_config=TransformConfig(
                field_mappings=[
                    *_identity_mappings(),
                    FieldMapping(
                        source_field="tc9_pr__Code__c",
                        target_field="tc9_pr__Code__c",
                        is_required=True,
                    ),
                    *_direct("tc9_pr__Type__c", "tc9_pr__Status__c"),
                    *_direct("tc9_pr__Rate__c", transformation_type="number"),
                ],
            ),
            load_config=_upsert(PAY_CODE_OBJECT, retry_wait_seconds=1),
            validation_config=ValidationConfig(
                data_integrity_checks=[
                    DataIntegrityCheck(
                        check_name="requiredFieldsValidation",
                        description="Validate that required fields are populated",
                        validation_query=(
                            f"SELECT Id, Name, tc9_pr__Code__c FROM {PAY_CODE_OBJECT} "
                            "WHERE Id IN ({selectedRecordIds}) "
                            "AND (Name = null OR tc9_pr__Code__c = null)"
                        ),
                        error_message=(
                            "Migration cannot proceed: Found pay codes with missing required "
                            "fields (Name or Code)"
                        ),
                    ),
                    DataIntegrityCheck(
                        check_name="uniqueCodeValidation",
                        description="Validate that pay code codes are unique",
                        validation_query=(
                            f"SELECT tc9_pr__Code__c, COUNT(Id) FROM {PAY_CODE_OBJECT} "
                            "GROUP BY tc9_pr__Code__c HAVING COUNT(Id) > 1"
                        ),
                        error_message=(
                            "Migration cannot proceed: Found duplicate pay code codes. "
                            "Each code must be unique"
                        ),
                    ),
                    DataIntegrityCheck(
                        check_name="sourcePayCodeExternalIdValidation",
                        description="Validate that selected pay codes carry external IDs",
                        validation_query=(
                            f"SELECT COUNT() FROM {PAY_CODE_OBJECT} "
                            "WHERE Id IN ({selectedRecordIds}) AND {externalIdField} = null"
                        ),
                        error_message="Found pay codes without external ID values",
                        severity="warning",
                    ),
                ],
                picklist_validation_checks=[
                    PicklistValidationCheck(
                        check_name="picklistValidation_tc9_pr__Type__c",
                        description="Validate Type picklist values",
                        field_name="tc9_pr__Type__c",
                        object_name=PAY_CODE_OBJECT,
                        error_message="Invalid Pay Code Type value",
                    ),
                    PicklistValidationCheck(
                        check_name="picklistValidation_tc9_pr__Status__c",
                        description="Validate Status picklist values",
                        field_name="tc9_pr__Status__c",
                        object_name=PAY_CODE_OBJECT,
                        error_message="Invalid Pay Code Status value",
                    ),
                ],
            ),
        ),
    ],
    execution_order=["payCodeMaster"],
    metadata=TemplateMetadata(
        supported_api_versions=["59.0", "60.0", "61.0"],
        required_permissions=[
            f"{PAY_CODE_OBJECT}.Read",
            f"{PAY_CODE_OBJECT}.Create",
            f"{PAY_CODE_OBJECT}.Edit",
        ],
        estimated_duration=5,
        complexity="simple",
    ),
)


INTERPRETATION_RULES_TEMPLATE = MigrationTemplate(
    id="payroll-interpretation-rules",
    name="Interpretation Rules",
    description="Migrate interpretation rules with variations and breakpoints",
    category="payroll",
    etl_steps=[
        ETLStep(
            step_name="interpretationRuleMaster",
            step_order=1,
            extract_config=ExtractConfig(
                soql_query=(
                    "SELECT Id, Name, RecordType.Name, tc9_et__Status__c, "
                    "tc9_et__Short_Description__c, tc9_et__Long_Description__c, "
                    "tc9_et__Timesheet_Frequency__c, tc9_et__Pay_Code__c, "
                    "tc9_et__Pay_Code__r.Name, tc9_et__Pay_Code__r.{externalIdField}, "
                    f"{', '.join(STANDARD_HOURS_FIELDS)}, {{externalIdField}} "
                    f"FROM {INTERPRETATION_RULE_OBJECT} "
                    "WHERE RecordType.Name != 'Interpretation Variation Rule' "
                    "AND Id IN ({selectedRecordIds})"
                ),
                object_api_name=INTERPRETATION_RULE_OBJECT,
            ),
            transform_config=TransformConfig(
                field_mappings=[
                    *_identity_mappings(),
                    *_direct(
                        "tc9_et__Status__c",
                        "tc9_et__Short_Description__c",
                        "tc9_et__Long_Description__c",
                        "tc9_et__Timesheet_Frequency__c",
                    ),
                    *_direct(*STANDARD_HOURS_FIELDS, transformation_type="number"),
                ],
                lookup_mappings=[
                    LookupMapping(
                        source_field="tc9_et__Pay_Code__r.{externalIdField}",
                        target_field="tc9_et__Pay_Code__c",
                        lookup_object=PAY_CODE_OBJECT,
                        lookup_key_field="{externalIdField}",
                        lookup_value_field="Id",
                    ),
                ],
                record_type_mapping=_record_type_mapping(),
            ),
            load_config=_upsert(INTERPRETATION_RULE_OBJECT),
            validation_config=ValidationConfig(
                pre_validation_queries=[_target_pay_codes_query()],
                dependency_checks=[
                    DependencyCheck(
                        check_name="payCodeExists",
                        description="Verify all referenced pay codes exist in target org",
                        source_field="tc9_et__Pay_Code__r.{externalIdField}",
                        target_object=PAY_CODE_OBJECT,
                        target_field="{externalIdField}",
                        is_required=True,
                        error_message=(
                            "Pay Code '{sourceValue}' referenced by Interpretation Rule "
                            "'{recordName}' does not exist in target org"
                        ),
                        cache_key="target_pay_codes",
                    ),
                ],
                data_integrity_checks=[
                    DataIntegrityCheck(
                        check_name="standardHoursValidation",
                        description=(
                            "Active rules other than daily rates need standard hours for every day"
                        ),
                        validation_query=(
                            f"SELECT Id, Name FROM {INTERPRETATION_RULE_OBJECT} "
                            "WHERE Id IN ({selectedRecordIds}) "
                            "AND tc9_et__Status__c = 'Active' "
                            "AND RecordType.DeveloperName != 'Daily_Rates' AND ("
                            + " OR ".join(f"{field} = null" for field in STANDARD_HOURS_FIELDS)
                            + ")"
                        ),
                        error_message=(
                            "Unable to finalise rule. Standard Hours must be populated for "
                            "every day on the Interpretation Rule"
                        ),
                    ),
                    DataIntegrityCheck(
                        check_name="sourcePayCodeExternalIdValidation",
                        description="Referenced pay codes must carry external IDs",
                        validation_query=(
                            f"SELECT COUNT() FROM {INTERPRETATION_RULE_OBJECT} "
                            "WHERE Id IN ({selectedRecordIds}) AND tc9_et__Pay_Code__c != null "
                            "AND tc9_et__Pay_Code__r.{externalIdField} = null"
                        ),
                        error_message="Found referenced pay codes without external ID values",
                    ),
                ],
            ),
            dependencies=[PAY_CODE_OBJECT],
        ),
        ETLStep(
            step_name="interpretationRuleVariation",
            step_order=2,
            extract_config=ExtractConfig(
                soql_query=(
                    "SELECT Id, Name, RecordType.Name, tc9_et__Interpretation_Rule__c, "
                    "tc9_et__Interpretation_Rule__r.Name, "
                    "tc9_et__Interpretation_Rule__r.{externalIdField}, "
                    "tc9_et__Variation_Type__c, tc9_et__Variation_Record_Type__c, "
                    f"{{externalIdField}} FROM {INTERPRETATION_RULE_OBJECT} "
                    "WHERE RecordType.Name = 'Interpretation Variation Rule' "
                    "AND tc9_et__Interpretation_Rule__c IN ({selectedRecordIds})"
                ),
                object_api_name=INTERPRETATION_RULE_OBJECT,
            ),
            transform_config=TransformConfig(
                field_mappings=[
                    *_identity_mappings(),
                    *_direct("tc9_et__Variation_Type__c", "tc9_et__Variation_Record_Type__c"),
                ],
                lookup_mappings=[
                    LookupMapping(
                        source_field="tc9_et__Interpretation_Rule__r.{externalIdField}",
                        target_field="tc9_et__Interpretation_Rule__c",
                        lookup_object=INTERPRETATION_RULE_OBJECT,
                        lookup_key_field="{externalIdField}",
                        lookup_value_field="Id",
                    ),
                ],
                record_type_mapping=_record_type_mapping(),
            ),
            load_config=_upsert(INTERPRETATION_RULE_OBJECT),
            validation_config=ValidationConfig(
                pre_validation_queries=[
                    PreValidationQuery(
                        query_name="targetInterpretationRules",
                        soql_query=(
                            "SELECT Id, {externalIdField}, Name "
                            f"FROM {INTERPRETATION_RULE_OBJECT}"
                        ),
                        cache_key="target_interpretation_rules",
                        description="Cache all target org interpretation rules for validation",
                    ),
                ],
                dependency_checks=[
                    DependencyCheck(
                        check_name="interpretationRuleExists",
                        description="Verify parent interpretation rule exists in target org",
                        source_field="tc9_et__Interpretation_Rule__r.{externalIdField}",
                        target_object=INTERPRETATION_RULE_OBJECT,
                        target_field="{externalIdField}",
                        is_required=False,
                        error_message=(
                            "Parent Interpretation Rule '{sourceValue}' for variation "
                            "'{recordName}' does not exist in target org"
                        ),
                        warning_message=(
                            "Parent Interpretation Rule '{sourceValue}' for variation "
                            "'{recordName}' will be loaded by the master step"
                        ),
                    ),
                ],
            ),
            dependencies=["interpretationRuleMaster"],
        ),
        ETLStep(
            step_name="interpretationBreakpoint",
            step_order=3,
            extract_config=ExtractConfig(
                soql_query=(
                    "SELECT Id, Name, tc9_et__Breakpoint_Type__c, tc9_et__Allowance_Type__c, "
                    "tc9_et__Daily_Quantity__c, tc9_et__End_Threshold__c, tc9_et__End_Time__c, "
                    "tc9_et__Interpretation_Rule__c, "
                    "tc9_et__Interpretation_Rule__r.{externalIdField}, "
                    "tc9_et__Pay_Code__r.Name, tc9_et__Pay_Code__r.{externalIdField}, "
                    f"{{externalIdField}} FROM {BREAKPOINT_OBJECT} "
                    "WHERE tc9_et__Interpretation_Rule__c IN ("
                    f"SELECT Id FROM {INTERPRETATION_RULE_OBJECT} "
                    "WHERE Id IN ({selectedRecordIds}))"
                ),
                object_api_name=BREAKPOINT_OBJECT,
                order_by="Name ASC",
            ),
            transform_config=TransformConfig(
                field_mappings=[
                    *_identity_mappings(),
                    FieldMapping(
                        source_field="tc9_et__Breakpoint_Type__c",
                        target_field="tc9_et__Breakpoint_Type__c",
                        is_required=True,
                    ),
                    *_direct("tc9_et__Allowance_Type__c", "tc9_et__End_Time__c"),
                    *_direct(
                        "tc9_et__Daily_Quantity__c",
                        "tc9_et__End_Threshold__c",
                        transformation_type="number",
                    ),
                ],
                lookup_mappings=[
                    LookupMapping(
                        source_field="tc9_et__Interpretation_Rule__r.{externalIdField}",
                        target_field="tc9_et__Interpretation_Rule__c",
                        lookup_object=INTERPRETATION_RULE_OBJECT,
                        lookup_key_field="{externalIdField}",
                        lookup_value_field="Id",
                    ),
                    LookupMapping(
                        source_field="tc9_et__Pay_Code__r.{externalIdField}",
                        target_field="tc9_et__Pay_Code__c",
                        lookup_object=PAY_CODE_OBJECT,
                        lookup_key_field="{externalIdField}",
                        lookup_value_field="Id",
                        allow_null=True,
                    ),
                ],
            ),
            load_config=_upsert(BREAKPOINT_OBJECT),
            validation_config=ValidationConfig(
                pre_validation_queries=[_target_pay_codes_query()],
                dependency_checks=[
                    DependencyCheck(
                        check_name="payCodeExists",
                        description="Verify breakpoint pay codes exist in target org",
                        source_field="tc9_et__Pay_Code__r.{externalIdField}",
                        target_object=PAY_CODE_OBJECT,
                        target_field="{externalIdField}",
                        is_required=True,
                        error_message=(
                            "Pay Code '{sourceValue}' referenced by Breakpoint '{recordName}' "
                            "does not exist in target org"
                        ),
                    ),
                ],
                data_integrity_checks=[
                    DataIntegrityCheck(
                        check_name="breakpointIntegrity",
                        description="Breakpoints need a type",
                        validation_query=(
                            f"SELECT Id, Name FROM {BREAKPOINT_OBJECT} "
                            "WHERE tc9_et__Breakpoint_Type__c = null "
                            "AND tc9_et__Interpretation_Rule__c IN ({selectedRecordIds})"
                        ),
                        error_message="Breakpoint is missing its breakpoint type",
                    ),
                ],
            ),
            dependencies=["interpretationRuleMaster", PAY_CODE_OBJECT],
        ),
    ],
    execution_order=[
        "interpretationRuleMaster",
        "interpretationRuleVariation",
        "interpretationBreakpoint",
    ],
    metadata=TemplateMetadata(
        supported_api_versions=["59.0", "60.0", "61.0"],
        required_permissions=[
            f"{INTERPRETATION_RULE_OBJECT}.Read",
            f"{INTERPRETATION_RULE_OBJECT}.Create",
            f"{BREAKPOINT_OBJECT}.Create",
        ],
        estimated_duration=15,
        complexity="complex",
    ),
)


BUILTIN_TEMPLATES = [PAY_CODES_TEMPLATE, INTERPRETATION_RULES_TEMPLATE]
