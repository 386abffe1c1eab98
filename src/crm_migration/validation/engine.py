"""Pre-migration validation engine.

One engine instance drives one validation run of a template. For every step
that declares a validation configuration it caches target reference data,
extracts the source records, and runs dependency, data integrity and
picklist checks. Every failure ends up as a ``ValidationIssue``;
``validate_template`` never raises.
"""

from typing import Any

from crm_migration.client.exceptions import QueryError, QuerySecurityError
from crm_migration.client.record_store import OrgConnectionManager, RecordStoreClient
from crm_migration.config import ExternalIdSettings, ValidationSettings
from crm_migration.external_id import ExternalIdResolver, Side, is_external_id_field
from crm_migration.query.builder import (
    EXTERNAL_ID_PLACEHOLDER,
    build_query,
    extract_object_name,
    format_selected_record_ids,
    optimize_for_batch,
    render_placeholders,
    validate_query,
)
from crm_migration.query.sanitizer import (
    build_safe_in_clause,
    sanitize_field_name,
    sanitize_limit,
    sanitize_object_name,
    validate_identifier,
    validate_soql_query,
)
from crm_migration.templates.models import (
    DataIntegrityCheck,
    DependencyCheck,
    ETLStep,
    ExternalIdHandlingConfig,
    MigrationTemplate,
    PicklistValidationCheck,
    PreValidationQuery,
)
from crm_migration.utils.logging import get_logger
from crm_migration.validation.formatter import (
    PICKLIST_CHECK_PREFIX,
    ValidationFormatter,
    object_label,
)
from crm_migration.validation.models import (
    IssueContext,
    Severity,
    ValidationIssue,
    ValidationResult,
)

logger = get_logger(__name__)

ORG_CONNECTIVITY_CHECK = "orgConnectivity"
STEP_FAILURE_CHECK = "stepValidation"
RUN_FAILURE_CHECK = "templateValidation"


def get_field_value(record: dict[str, Any], field_path: str) -> Any:
    """Read a possibly relationship-qualified field (``Rel__r.Field``) from a record."""
    value: Any = record
    for part in field_path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def derive_cache_key(object_name: str) -> str:
    """Default cache key for an object's pre-validated target rows."""
    return "target_" + object_name.lower().replace("__c", "", 1).replace("tc9_et__", "", 1)


def _is_null(value: Any) -> bool:
    return value is None or value == ""


class ValidationEngine:
    """Validate a migration template against a source and target org.

    Run state lives on the instance, so concurrent runs need separate
    engines. ``clear_cache`` resets an instance for reuse.

    Args:
        connections: Org-keyed record-store clients
        settings: Query limits and multi-value separator
        external_id_settings: Candidate external ID field names
        formatter: Formatter applied when an instance URL is supplied
    """

    def __init__(
        self,
        connections: OrgConnectionManager,
        settings: ValidationSettings | None = None,
        external_id_settings: ExternalIdSettings | None = None,
        formatter: ValidationFormatter | None = None,
    ):
        self.connections = connections
        self.settings = settings or ValidationSettings()
        self.resolver = ExternalIdResolver(external_id_settings)
        self.formatter = formatter or ValidationFormatter()
        self.clear_cache()

    def clear_cache(self) -> None:
        """Reset all run state."""
        self.validation_cache: dict[str, list[dict[str, Any]]] = {}
        self.source_org_id: str | None = None
        self.target_org_id: str | None = None
        self.current_target_object: str | None = None
        self.current_source_query: str | None = None
        self.selected_record_ids: list[str] = []
        self._picklist_issue_keys: set[tuple[str, tuple[str, ...]]] = set()
        self._external_id_fields: dict[tuple[str, str], str] = {}

    @property
    def source_client(self) -> RecordStoreClient:
        return self.connections.get_client(self.source_org_id or "")

    @property
    def target_client(self) -> RecordStoreClient:
        return self.connections.get_client(self.target_org_id or "")

    async def validate_template(
        self,
        template: MigrationTemplate,
        source_org_id: str,
        target_org_id: str,
        selected_record_ids: list[str] | None = None,
        source_instance_url: str | None = None,
    ) -> ValidationResult:
        """Run every step's validation configuration in execution order.

        Args:
            template: Template to validate
            source_org_id: Org the records are read from
            target_org_id: Org the records will be loaded into
            selected_record_ids: Restrict source extraction to these records
            source_instance_url: When given, issues are formatted for display
                and linked to the source org

        Returns:
            Merged result of all steps
        """
        self.source_org_id = source_org_id
        self.target_org_id = target_org_id
        self.selected_record_ids = list(selected_record_ids or [])

        logger.info(
            "template_validation_started",
            template_id=template.id,
            source_org_id=source_org_id,
            target_org_id=target_org_id,
            selected_records=len(self.selected_record_ids),
        )

        result = ValidationResult()

        try:
            if not await self.connections.are_all_orgs_healthy([source_org_id, target_org_id]):
                result.add_issue(
                    ValidationIssue(
                        check_name=ORG_CONNECTIVITY_CHECK,
                        message=(
                            "Unable to connect to one or both organisations. "
                            "Please reconnect and try again."
                        ),
                        severity=Severity.ERROR,
                        suggested_action="Reconnect to the organisation.",
                    )
                )
                return self._finish(template, result, source_org_id, source_instance_url)

            for step in template.ordered_steps():
                if step.validation_config is None:
                    logger.debug("step_validation_skipped", step_name=step.step_name)
                    continue
                result.merge(await self._validate_step_guarded(step))

        except Exception as e:
            logger.error("template_validation_failed", template_id=template.id, error=str(e))
            result = ValidationResult.from_issues(
                [
                    ValidationIssue(
                        check_name=RUN_FAILURE_CHECK,
                        message=f"Validation of template '{template.name}' failed: {e}",
                        severity=Severity.ERROR,
                    )
                ]
            )

        return self._finish(template, result, source_org_id, source_instance_url)

    def _finish(
        self,
        template: MigrationTemplate,
        result: ValidationResult,
        source_org_id: str,
        source_instance_url: str | None,
    ) -> ValidationResult:
        if source_instance_url:
            result = self.formatter.format_result(result, source_org_id, source_instance_url)

        summary = result.summary
        logger.info(
            "template_validation_completed",
            template_id=template.id,
            is_valid=result.is_valid,
            total_checks=summary.total_checks,
            failed_checks=summary.failed_checks,
            warning_checks=summary.warning_checks,
        )
        return result

    async def _validate_step_guarded(self, step: ETLStep) -> ValidationResult:
        """Validate one step, turning any failure into a single step-level error."""
        try:
            return await self.validate_step(step)
        except Exception as e:
            logger.error("step_validation_failed", step_name=step.step_name, error=str(e))
            return ValidationResult.from_issues(
                [
                    ValidationIssue(
                        check_name=STEP_FAILURE_CHECK,
                        message=f"Validation failed for step '{step.step_name}': {e}",
                        severity=Severity.ERROR,
                        suggested_action="Check the step's queries and org permissions.",
                    )
                ]
            )

    async def validate_step(self, step: ETLStep) -> ValidationResult:
        """Run the pre-validation, extraction and checks of one step.

        Raises:
            QueryError: If the source extraction query is invalid or fails
        """
        config = step.validation_config
        result = ValidationResult()
        if config is None:
            return result

        logger.info("step_validation_started", step_name=step.step_name)
        self.current_target_object = step.load_config.target_object

        await self.execute_pre_validation_queries(
            config.pre_validation_queries, step.transform_config.external_id_handling
        )
        source_records = await self.extract_source_records(step)

        result.merge(
            await self.run_dependency_checks(
                step, config.dependency_checks, source_records, config.pre_validation_queries
            )
        )
        result.merge(await self.run_data_integrity_checks(step, config.data_integrity_checks))
        result.merge(await self.run_picklist_checks(step, config.picklist_validation_checks))

        logger.info(
            "step_validation_completed",
            step_name=step.step_name,
            errors=len(result.errors),
            warnings=len(result.warnings),
        )
        return result

    # External ID resolution

    async def resolve_external_id_field(self, org_id: str, object_name: str | None) -> str:
        """Detected external ID field of an object in an org, cached for the run."""
        if not object_name:
            return self.resolver.managed_field

        cache_key = (org_id, object_name)
        if cache_key not in self._external_id_fields:
            client = self.connections.get_client(org_id)
            info = await self.resolver.detect_environment_info(client, object_name)
            self._external_id_fields[cache_key] = info.external_id_field
        return self._external_id_fields[cache_key]

    async def external_id_field_for(
        self,
        side: Side,
        object_name: str | None,
        handling: ExternalIdHandlingConfig | None = None,
    ) -> str:
        """External ID field one side uses for an object under a step's handling config.

        The ``manual`` strategy never describes the org.
        """
        if handling is not None and handling.strategy == "manual":
            return self.resolver.get_external_id_field(handling, side=side)

        org_id = self.target_org_id if side == "target" else self.source_org_id
        detected = await self.resolve_external_id_field(org_id or "", object_name)
        if handling is None:
            return detected
        return self.resolver.get_external_id_field(handling, detected, side)

    async def source_external_id_field(self, step: ETLStep) -> str:
        """Field substituted for ``{externalIdField}`` in the step's extraction query."""
        return await self.external_id_field_for(
            "source",
            step.extract_config.object_api_name,
            step.transform_config.external_id_handling,
        )

    async def _resolve_field_name(
        self,
        field_name: str,
        side: Side,
        object_name: str,
        handling: ExternalIdHandlingConfig | None = None,
    ) -> str:
        if EXTERNAL_ID_PLACEHOLDER not in field_name:
            return field_name
        external_id_field = await self.external_id_field_for(side, object_name, handling)
        return render_placeholders(field_name, {"externalIdField": external_id_field})

    async def _render_query(
        self,
        query: str,
        side: Side,
        default_object: str | None,
        handling: ExternalIdHandlingConfig | None = None,
    ) -> str:
        """Resolve placeholders of a check query and reject malformed or unsafe results.

        Raises:
            QueryError: If the rendered query fails construction checks
            QuerySecurityError: If the rendered query has an injection shape
        """
        values = {"selectedRecordIds": format_selected_record_ids(self.selected_record_ids)}
        if EXTERNAL_ID_PLACEHOLDER in query:
            object_name = extract_object_name(query) or default_object
            external_id_field = validate_identifier(
                await self.external_id_field_for(side, object_name, handling)
            )
            values["externalIdField"] = external_id_field

        rendered = render_placeholders(query.strip(), values)
        problems = validate_query(rendered)
        if problems:
            raise QueryError(f"Invalid query: {'; '.join(problems)}", query=rendered)
        validate_soql_query(rendered)
        return rendered

    # Pre-validation

    async def execute_pre_validation_queries(
        self,
        queries: list[PreValidationQuery],
        handling: ExternalIdHandlingConfig | None = None,
    ) -> None:
        """Cache the target rows of each query under its cache key.

        A failing query caches an empty list so later dependency checks
        report missing references instead of crashing.
        """
        for pre_query in queries:
            try:
                query = await self._render_query(pre_query.soql_query, "target", None, handling)
                query_result = await self.target_client.query(query)
                if not query_result.success:
                    raise QueryError(
                        query_result.error or "Query failed",
                        query=query,
                        error_code=query_result.error_code,
                    )
                rows = query_result.records or []
            except Exception as e:
                logger.warning(
                    "pre_validation_query_failed",
                    query_name=pre_query.query_name,
                    cache_key=pre_query.cache_key,
                    error=str(e) or type(e).__name__,
                )
                rows = []

            self.validation_cache[pre_query.cache_key] = rows
            logger.debug(
                "pre_validation_cached",
                query_name=pre_query.query_name,
                cache_key=pre_query.cache_key,
                rows=len(rows),
            )

    # Source extraction

    async def extract_source_records(self, step: ETLStep) -> list[dict[str, Any]]:
        """Extract the step's source records with a safety LIMIT.

        Raises:
            QueryError: If the query is malformed, unsafe or fails in the source org
        """
        extract_config = step.extract_config
        if EXTERNAL_ID_PLACEHOLDER in extract_config.soql_query:
            external_id_field = await self.source_external_id_field(step)
        else:
            external_id_field = self.resolver.managed_field

        query = build_query(extract_config, external_id_field, self.selected_record_ids or None)
        query = optimize_for_batch(query, self.settings.source_record_limit)
        self.current_source_query = query

        problems = validate_query(query)
        if problems:
            raise QueryError(
                f"Invalid extraction query for step '{step.step_name}': {'; '.join(problems)}",
                query=query,
            )
        try:
            validate_soql_query(query)
        except QuerySecurityError as e:
            raise QueryError(
                f"Unsafe extraction query for step '{step.step_name}': {e}", query=query
            ) from e

        logger.debug("source_extraction_query", step_name=step.step_name, query=query)
        query_result = await self.source_client.query(query)
        if not query_result.success:
            raise QueryError(
                f"Source extraction failed for step '{step.step_name}': {query_result.error}",
                query=query,
                error_code=query_result.error_code,
            )

        records = query_result.records or []
        logger.info("source_records_extracted", step_name=step.step_name, records=len(records))
        return records

    # Dependency checks

    def _dependency_cache_key(
        self, check: DependencyCheck, pre_validation_queries: list[PreValidationQuery]
    ) -> str:
        if check.cache_key:
            return check.cache_key
        for pre_query in pre_validation_queries:
            object_name = extract_object_name(pre_query.soql_query)
            if object_name and object_name.lower() == check.target_object.lower():
                return pre_query.cache_key
        return derive_cache_key(check.target_object)

    def _reference_value(self, record: dict[str, Any], source_field: str) -> Any:
        """Read a source reference, trying every external ID candidate for identity fields.

        Raises:
            KeyError: If the row carries the related record but not the field
        """
        parent_path, _, leaf = source_field.rpartition(".")
        if is_external_id_field(leaf):
            owner_path, _, relationship = parent_path.rpartition(".")
            owner = get_field_value(record, owner_path) if owner_path else record
            if not isinstance(owner, dict):
                return None
            return self.resolver.extract_external_id_value(owner, relationship or None, leaf)

        holder = get_field_value(record, parent_path) if parent_path else record
        if isinstance(holder, dict) and leaf not in holder:
            raise KeyError(source_field)
        return get_field_value(record, source_field)

    async def run_dependency_checks(
        self,
        step: ETLStep,
        checks: list[DependencyCheck],
        source_records: list[dict[str, Any]],
        pre_validation_queries: list[PreValidationQuery] | None = None,
    ) -> ValidationResult:
        """Check every source reference against the cached target rows."""
        result = ValidationResult()
        handling = step.transform_config.external_id_handling

        for check in checks:
            cache_key = self._dependency_cache_key(check, pre_validation_queries or [])
            target_rows = self.validation_cache.get(cache_key)
            if target_rows is None:
                result.add_issue(
                    ValidationIssue(
                        check_name=check.check_name,
                        message=(
                            f"Target cache for {check.target_object} not found "
                            f"(cache key '{cache_key}')"
                        ),
                        severity=Severity.ERROR,
                        suggested_action="Add a pre-validation query for the target object.",
                    )
                )
                continue

            # Source references are read with the field the extraction query selected
            source_field = await self._resolve_field_name(
                check.source_field, "source", step.extract_config.object_api_name, handling
            )
            target_field = await self._resolve_field_name(
                check.target_field, "target", check.target_object, handling
            )
            case_insensitive = is_external_id_field(target_field)

            def normalise(value: Any) -> str:
                text = str(value)
                return text.lower() if case_insensitive else text

            known_values = {
                normalise(value)
                for value in (get_field_value(row, target_field) for row in target_rows)
                if not _is_null(value)
            }

            for record in source_records:
                try:
                    source_value = self._reference_value(record, source_field)
                except KeyError:
                    result.add_issue(self._unreadable_reference_issue(check, record, source_field))
                    continue

                if _is_null(source_value) or normalise(source_value) in known_values:
                    continue

                issue = self._dependency_issue(check, step, record, source_field, source_value)
                if issue is not None:
                    result.add_issue(issue)

            logger.debug(
                "dependency_check_completed",
                check_name=check.check_name,
                cache_key=cache_key,
                source_records=len(source_records),
                target_rows=len(target_rows),
            )

        return result

    @staticmethod
    def _unreadable_reference_issue(
        check: DependencyCheck, record: dict[str, Any], source_field: str
    ) -> ValidationIssue:
        record_name = record.get("Name") or record.get("Id")
        return ValidationIssue(
            check_name=check.check_name,
            message=(
                f"Reference {source_field} was not returned for '{record_name}' "
                f"and cannot be checked against {check.target_object}"
            ),
            severity=Severity.ERROR if check.is_required else Severity.WARNING,
            record_id=record.get("Id"),
            record_name=record.get("Name"),
            field=check.source_field,
            suggested_action="Select the referenced field in the step's extraction query.",
        )

    def _dependency_issue(
        self,
        check: DependencyCheck,
        step: ETLStep,
        record: dict[str, Any],
        source_field: str,
        source_value: Any,
    ) -> ValidationIssue | None:
        if check.is_required:
            template, severity = check.error_message, Severity.ERROR
        elif check.warning_message:
            template, severity = check.warning_message, Severity.WARNING
        else:
            return None

        record_name = record.get("Name") or record.get("Id")
        missing_target_name = None
        if "." in source_field:
            relationship = get_field_value(record, source_field.rsplit(".", 1)[0])
            if isinstance(relationship, dict):
                missing_target_name = relationship.get("Name")

        target_label = object_label(check.target_object)
        return ValidationIssue(
            check_name=check.check_name,
            message=render_placeholders(
                template,
                {"sourceValue": str(source_value), "recordName": str(record_name)},
            ),
            severity=severity,
            record_id=record.get("Id"),
            record_name=record.get("Name"),
            field=check.source_field,
            suggested_action=(
                f"Migrate the missing {target_label.lower()} first or update the reference."
            ),
            context=IssueContext(
                source_value=str(source_value),
                target_object=check.target_object,
                missing_target_name=missing_target_name,
                missing_target_external_id=str(source_value),
                source_record_type=object_label(step.extract_config.object_api_name),
            ),
        )

    # Data integrity checks

    @staticmethod
    def _meets_expectation(expected_result: str, count: int) -> bool:
        if expected_result == "empty":
            return count == 0
        if expected_result == "non-empty":
            return count > 0
        # count-match is reserved and always passes
        return True

    async def run_data_integrity_checks(
        self, step: ETLStep, checks: list[DataIntegrityCheck]
    ) -> ValidationResult:
        """Run each integrity query against the source org."""
        result = ValidationResult()

        for check in checks:
            try:
                query = await self._render_query(
                    check.validation_query,
                    "source",
                    step.extract_config.object_api_name,
                    step.transform_config.external_id_handling,
                )
                query_result = await self.source_client.query(query)
                if not query_result.success:
                    raise QueryError(
                        query_result.error or "Query failed",
                        query=query,
                        error_code=query_result.error_code,
                    )
            except Exception as e:
                reason = str(e) or type(e).__name__
                logger.warning(
                    "data_integrity_check_failed", check_name=check.check_name, error=reason
                )
                result.add_issue(
                    ValidationIssue(
                        check_name=check.check_name,
                        message=f"Failed to execute integrity check: {reason}",
                        severity=Severity.ERROR,
                    )
                )
                continue

            if query_result.aggregate_count is not None:
                rows: list[dict[str, Any]] = []
                count = query_result.aggregate_count
            else:
                rows = query_result.records or []
                count = len(rows)

            if self._meets_expectation(check.expected_result, count):
                continue

            severity = Severity(check.severity)
            if rows and "Id" in rows[0]:
                for row in rows:
                    result.add_issue(
                        ValidationIssue(
                            check_name=check.check_name,
                            message=check.error_message,
                            severity=severity,
                            record_id=row.get("Id"),
                            record_name=row.get("Name"),
                        )
                    )
            else:
                result.add_issue(
                    ValidationIssue(
                        check_name=check.check_name,
                        message=f"{check.error_message} (Found {count} records)",
                        severity=severity,
                    )
                )

        return result

    # Picklist checks

    async def detect_picklist_checks(self, step: ETLStep) -> list[PicklistValidationCheck]:
        """Derive checks for direct mappings onto target picklist fields."""
        target_object = step.load_config.target_object
        metadata = await self.target_client.get_object_metadata(target_object)
        if not metadata.success:
            logger.warning(
                "picklist_detection_failed", target_object=target_object, error=metadata.error
            )
            return []

        checks = []
        for mapping in step.transform_config.field_mappings:
            if mapping.transformation_type != "direct":
                continue
            if "." in mapping.source_field or "{" in mapping.source_field:
                continue
            target_field = metadata.get_field(mapping.target_field)
            if target_field is None or not target_field.is_picklist:
                continue

            checks.append(
                PicklistValidationCheck(
                    check_name=f"{PICKLIST_CHECK_PREFIX}{mapping.target_field}",
                    description=f"Validate {mapping.source_field} values exist in target",
                    field_name=mapping.source_field,
                    object_name=step.extract_config.object_api_name,
                    validate_against_target=True,
                    target_object=target_object,
                    target_field=target_field.name,
                )
            )

        logger.debug("picklist_checks_detected", step_name=step.step_name, count=len(checks))
        return checks

    async def run_picklist_checks(
        self, step: ETLStep, checks: list[PicklistValidationCheck] | None
    ) -> ValidationResult:
        """Run explicit picklist checks, or auto-detected ones when none are declared."""
        result = ValidationResult()
        if checks is None:
            try:
                checks = await self.detect_picklist_checks(step)
            except Exception as e:
                logger.warning("picklist_detection_failed", step_name=step.step_name, error=str(e))
                checks = []

        for check in checks:
            try:
                issue = await self.validate_picklist(check)
            except Exception as e:
                reason = str(e) or type(e).__name__
                logger.warning("picklist_check_failed", check_name=check.check_name, error=reason)
                issue = ValidationIssue(
                    check_name=check.check_name,
                    message=f"Failed to validate picklist field {check.field_name}: {reason}",
                    severity=Severity.ERROR,
                    field=check.field_name,
                )
            if issue is not None:
                result.add_issue(issue)

        return result

    async def _allowed_values(self, check: PicklistValidationCheck) -> list[str] | None:
        if not check.validate_against_target:
            return check.allowed_values

        target_object = check.resolved_target_object
        target_field = check.resolved_target_field
        picklist = await self.target_client.get_picklist_values(target_object, target_field)
        if not picklist.success or picklist.data is None:
            raise QueryError(
                f"Could not read picklist values of {target_object}.{target_field}: "
                f"{picklist.error}"
            )
        return picklist.data.active_values

    async def validate_picklist(self, check: PicklistValidationCheck) -> ValidationIssue | None:
        """Compare unique source values against allowed values.

        Returns one combined issue per field, or None when every value is
        valid or the same invalid set was already reported in this run.
        """
        allowed = await self._allowed_values(check)
        if allowed is None:
            return None

        source_values = await self.collect_unique_values(check.object_name, check.field_name)
        allowed_set = set(allowed)
        invalid = sorted(value for value in source_values if value not in allowed_set)
        if not invalid:
            return None

        issue_key = (check.field_name, tuple(invalid))
        if issue_key in self._picklist_issue_keys:
            logger.debug("picklist_issue_deduplicated", field_name=check.field_name)
            return None
        self._picklist_issue_keys.add(issue_key)

        return ValidationIssue(
            check_name=check.check_name,
            message=(
                f"Invalid picklist values found for {check.field_name}: {', '.join(invalid)}. "
                f"Valid values are: {', '.join(allowed)}"
            ),
            severity=Severity.ERROR,
            field=check.field_name,
            suggested_action="Add missing picklist value in target org.",
            context=IssueContext(invalid_values=invalid, valid_values=list(allowed)),
        )

    async def collect_unique_values(self, object_name: str, field_name: str) -> set[str]:
        """Unique non-null source values of a field.

        Uses a grouped query first. Multi-select fields cannot be grouped, so
        on failure a bounded flat fetch is split on the separator instead.

        Raises:
            QueryError: If the fallback query also fails
        """
        object_name = sanitize_object_name(object_name)
        field_name = sanitize_field_name(field_name)

        where_clause = f"{field_name} != null"
        if self.selected_record_ids:
            where_clause += f" AND {build_safe_in_clause('Id', self.selected_record_ids)}"

        grouped_query = (
            f"SELECT {field_name}, COUNT(Id) FROM {object_name} "
            f"WHERE {where_clause} GROUP BY {field_name}"
        )
        grouped = await self.source_client.query(grouped_query)
        if grouped.success and grouped.records is not None:
            return {
                str(row[field_name]) for row in grouped.records if not _is_null(row.get(field_name))
            }

        logger.info(
            "picklist_fallback_used",
            object_name=object_name,
            field_name=field_name,
            error=grouped.error,
        )
        limit = sanitize_limit(self.settings.picklist_fallback_limit)
        flat_query = f"SELECT {field_name} FROM {object_name} WHERE {where_clause} LIMIT {limit}"
        flat = await self.source_client.query(flat_query)
        if not flat.success:
            raise QueryError(
                flat.error or "Query failed", query=flat_query, error_code=flat.error_code
            )

        separator = self.settings.multi_value_separator
        values: set[str] = set()
        for row in flat.records or []:
            raw = row.get(field_name)
            if _is_null(raw):
                continue
            values.update(part.strip() for part in str(raw).split(separator) if part.strip())
        return values
