"""External ID field resolution.

Each org stores the durable cross-org identity of a record in one of three
fields: the namespaced field installed by the managed package, the bare
field of an unmanaged deployment, or a generic fallback. The resolver
detects which one an org uses for an object and, when source and target
differ, describes the cross-environment mapping between them.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Literal

from crm_migration.client.record_store import RecordStoreClient
from crm_migration.config import ExternalIdSettings
from crm_migration.query.builder import replace_external_id_placeholders
from crm_migration.query.sanitizer import FIELD_SEGMENT_PATTERN
from crm_migration.templates.models import (
    CrossEnvironmentMapping,
    ExternalIdHandlingConfig,
    PackageKind,
)
from crm_migration.utils.logging import get_logger

logger = get_logger(__name__)

VALID_STRATEGIES = ("auto-detect", "manual", "cross-environment")

Side = Literal["source", "target"]

_RELATIONSHIP_PLACEHOLDER = re.compile(r"(\w+__r)\.\{externalIdField\}")


@dataclass
class EnvironmentExternalIdInfo:
    """External ID layout detected for one org."""

    package_kind: PackageKind
    external_id_field: str
    detected_fields: list[str] = field(default_factory=list)
    fallback_used: bool = False


@dataclass
class ExternalIdIssue:
    """Diagnostic raised by the cross-environment compatibility check."""

    severity: str
    message: str
    suggested_action: str
    affected_objects: list[str] = field(default_factory=lambda: ["All objects"])


@dataclass
class ExternalIdValidationResult:
    """Outcome of comparing source and target external ID layouts."""

    source_environment: EnvironmentExternalIdInfo
    target_environment: EnvironmentExternalIdInfo
    cross_environment_detected: bool
    potential_issues: list[ExternalIdIssue] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)


class ExternalIdResolver:
    """Detect and map external ID fields across orgs.

    Args:
        settings: Candidate field names; defaults to the standard three
    """

    def __init__(self, settings: ExternalIdSettings | None = None):
        self.settings = settings or ExternalIdSettings()

    @property
    def managed_field(self) -> str:
        return self.settings.managed_field

    @property
    def unmanaged_field(self) -> str:
        return self.settings.unmanaged_field

    @property
    def fallback_field(self) -> str:
        return self.settings.fallback_field

    def get_all_possible_external_id_fields(self) -> list[str]:
        """Candidate fields in detection priority order."""
        return [self.managed_field, self.unmanaged_field, self.fallback_field]

    async def _existing_candidates(self, client: RecordStoreClient, object_name: str) -> list[str]:
        """Return the candidate fields present on an object.

        Raises:
            LookupError: If the object cannot be described
        """
        metadata = await client.get_object_metadata(object_name)
        if not metadata.success:
            raise LookupError(metadata.error or f"Describe of {object_name} failed")

        present = {name.lower() for name in metadata.field_names}
        return [
            candidate
            for candidate in self.get_all_possible_external_id_fields()
            if candidate.lower() in present
        ]

    async def detect_external_id_field(self, client: RecordStoreClient, object_name: str) -> str:
        """Return the highest-priority candidate field present on an object.

        Falls back to the managed field when none is found or detection fails.
        """
        try:
            existing = await self._existing_candidates(client, object_name)
        except LookupError as e:
            logger.warning("external_id_detection_failed", object_name=object_name, error=str(e))
            return self.managed_field

        if not existing:
            logger.warning("external_id_field_not_found", object_name=object_name)
            return self.managed_field
        return existing[0]

    async def detect_environment_info(
        self, client: RecordStoreClient, object_name: str
    ) -> EnvironmentExternalIdInfo:
        """Describe which external ID field an org uses for an object.

        A managed field marks a managed environment. Otherwise the bare field
        marks an unmanaged one. The generic fallback field, or nothing at all,
        sets ``fallback_used``.
        """
        try:
            existing = await self._existing_candidates(client, object_name)
        except LookupError as e:
            logger.warning(
                "external_id_environment_detection_failed", object_name=object_name, error=str(e)
            )
            return EnvironmentExternalIdInfo(
                package_kind="managed",
                external_id_field=self.managed_field,
                detected_fields=[self.managed_field],
                fallback_used=True,
            )

        if self.managed_field in existing:
            info = EnvironmentExternalIdInfo("managed", self.managed_field, existing, False)
        elif self.unmanaged_field in existing:
            info = EnvironmentExternalIdInfo("unmanaged", self.unmanaged_field, existing, False)
        else:
            info = EnvironmentExternalIdInfo("unmanaged", self.fallback_field, existing, True)

        logger.debug(
            "external_id_environment_detected",
            object_name=object_name,
            package_kind=info.package_kind,
            external_id_field=info.external_id_field,
            fallback_used=info.fallback_used,
        )
        return info

    def detect_cross_environment_mapping(
        self,
        source_info: EnvironmentExternalIdInfo,
        target_info: EnvironmentExternalIdInfo,
    ) -> ExternalIdHandlingConfig:
        """Build the external ID handling for a source/target pair."""
        cross_environment = source_info.package_kind != target_info.package_kind

        return ExternalIdHandlingConfig(
            source_field=source_info.external_id_field,
            target_field=target_info.external_id_field,
            managed_field=self.managed_field,
            unmanaged_field=self.unmanaged_field,
            fallback_field=self.fallback_field,
            strategy="cross-environment" if cross_environment else "auto-detect",
            cross_environment_mapping=(
                CrossEnvironmentMapping(
                    source_package_type=source_info.package_kind,
                    target_package_type=target_info.package_kind,
                )
                if cross_environment
                else None
            ),
        )

    def validate_cross_environment_compatibility(
        self,
        source_info: EnvironmentExternalIdInfo,
        target_info: EnvironmentExternalIdInfo,
    ) -> ExternalIdValidationResult:
        """Report fallback usage, missing fields and cross-environment moves."""
        cross_environment = source_info.package_kind != target_info.package_kind
        result = ExternalIdValidationResult(
            source_environment=source_info,
            target_environment=target_info,
            cross_environment_detected=cross_environment,
        )

        for side, info in (("Source", source_info), ("Target", target_info)):
            if info.fallback_used:
                result.potential_issues.append(
                    ExternalIdIssue(
                        severity="warning",
                        message=(
                            f"{side} environment is using fallback external ID field: "
                            f"{info.external_id_field}"
                        ),
                        suggested_action=(
                            f"Verify that the {side.lower()} org has its external ID field "
                            "configured and populated"
                        ),
                    )
                )

        if cross_environment:
            result.potential_issues.append(
                ExternalIdIssue(
                    severity="info",
                    message=(
                        "Cross-environment migration detected: "
                        f"{source_info.package_kind} -> {target_info.package_kind}"
                    ),
                    suggested_action=(
                        "Ensure external ID values are properly mapped between environments"
                    ),
                )
            )
            result.recommendations.extend(
                [
                    f"Source external ID field: {source_info.external_id_field}",
                    f"Target external ID field: {target_info.external_id_field}",
                    "Verify that all related objects have been migrated with consistent "
                    "external IDs",
                ]
            )

        for side, info in (("source", source_info), ("target", target_info)):
            if not info.detected_fields:
                result.potential_issues.append(
                    ExternalIdIssue(
                        severity="error",
                        message=f"No external ID fields detected in {side} environment",
                        suggested_action=(
                            f"Ensure the {side} org has proper external ID field configuration"
                        ),
                    )
                )

        return result

    def build_cross_environment_query(
        self, query: str, source_field: str, target_field: str | None = None
    ) -> str:
        """Resolve ``{externalIdField}`` for a query run against the source org.

        Every placeholder, including ``Relationship__r.{externalIdField}``,
        becomes the source field. ``target_field`` is only logged; source
        queries never select target-side field names.
        """
        relationship_count = len(_RELATIONSHIP_PLACEHOLDER.findall(query))
        rewritten = replace_external_id_placeholders(query, source_field)
        logger.debug(
            "cross_environment_query_built",
            source_field=source_field,
            target_field=target_field,
            relationship_placeholders=relationship_count,
        )
        return rewritten

    def get_external_id_field(
        self,
        config: ExternalIdHandlingConfig,
        detected_field: str | None = None,
        side: Side = "source",
    ) -> str:
        """Pick the field one side of the migration uses under a handling config.

        ``manual`` takes the configured field of that side, then the other
        side's. ``cross-environment`` takes the configured field of that side,
        then the detected one. ``auto-detect`` uses detection.
        """
        if side == "source":
            own, other = config.source_field, config.target_field
        else:
            own, other = config.target_field, config.source_field

        if config.strategy == "manual":
            return own or other or config.fallback_field
        if config.strategy == "cross-environment":
            return own or detected_field or config.fallback_field
        return detected_field or config.fallback_field

    @staticmethod
    def validate_config(config: ExternalIdHandlingConfig) -> list[str]:
        """Return problems with a handling config (empty when valid)."""
        errors: list[str] = []

        for label, value in (
            ("Managed", config.managed_field),
            ("Unmanaged", config.unmanaged_field),
            ("Fallback", config.fallback_field),
        ):
            if not value:
                errors.append(f"{label} field is required")
            elif not FIELD_SEGMENT_PATTERN.match(value):
                errors.append(f"{label} field '{value}' is not a valid field name")

        for label, value in (("Source", config.source_field), ("Target", config.target_field)):
            if value and not FIELD_SEGMENT_PATTERN.match(value):
                errors.append(f"{label} field '{value}' is not a valid field name")

        if config.strategy not in VALID_STRATEGIES:
            errors.append(f"Invalid strategy. Must be one of: {', '.join(VALID_STRATEGIES)}")

        if config.strategy == "manual" and not (config.source_field or config.target_field):
            errors.append("Manual strategy requires a source or target field")

        if config.strategy == "cross-environment" and config.cross_environment_mapping is None:
            errors.append("Cross-environment strategy requires a cross environment mapping")

        return errors

    def extract_external_id_value(
        self, record: dict[str, Any], relationship_name: str | None, preferred_field: str
    ) -> Any:
        """Read a related record's external ID, trying every candidate field.

        Without ``relationship_name`` the record itself is read. A null
        relationship, or candidate fields that are all empty, give None.

        Raises:
            KeyError: If the related record carries none of the candidate fields
        """
        related = record.get(relationship_name) if relationship_name else record
        if not isinstance(related, dict):
            return None

        candidates = dict.fromkeys([preferred_field, *self.get_all_possible_external_id_fields()])
        present = [candidate for candidate in candidates if candidate in related]
        if not present:
            raise KeyError(preferred_field)

        for candidate in present:
            value = related[candidate]
            if value:
                return value
        return None


def is_external_id_field(field_name: str) -> bool:
    """True when a field name denotes an external ID field."""
    return "external_id" in field_name.lower()

