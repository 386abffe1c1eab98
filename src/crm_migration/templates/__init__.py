"""Migration template models, registry and built-in definitions.

Only the models are re-exported here; import ``templates.registry`` and
``templates.definitions`` directly.
"""

from crm_migration.templates.models import (
    DataIntegrityCheck,
    DependencyCheck,
    ETLStep,
    ExternalIdHandlingConfig,
    ExtractConfig,
    FieldMapping,
    LoadConfig,
    LookupMapping,
    MigrationTemplate,
    PicklistValidationCheck,
    PreValidationQuery,
    RecordTypeMapping,
    TemplateMetadata,
    TransformConfig,
    ValidationConfig,
)

__all__ = [
    "DataIntegrityCheck",
    "DependencyCheck",
    "ETLStep",
    "ExternalIdHandlingConfig",
    "ExtractConfig",
    "FieldMapping",
    "LoadConfig",
    "LookupMapping",
    "MigrationTemplate",
    "PicklistValidationCheck",
    "PreValidationQuery",
    "RecordTypeMapping",
    "TemplateMetadata",
    "TransformConfig",
    "ValidationConfig",
]
