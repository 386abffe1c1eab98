"""Template registry and YAML template loading."""

from pathlib import Path

import yaml
from pydantic import ValidationError

from crm_migration.client.exceptions import TemplateError
from crm_migration.external_id import ExternalIdResolver
from crm_migration.templates.definitions import BUILTIN_TEMPLATES
from crm_migration.templates.models import MigrationTemplate
from crm_migration.utils.logging import get_logger

logger = get_logger(__name__)

YAML_SUFFIXES = (".yaml", ".yml")


def load_template_from_yaml(template_path: str | Path) -> MigrationTemplate:
    """Load a migration template from a YAML file.

    Keys may be camelCase (as exported) or snake_case.

    Args:
        template_path: Path to YAML template file

    Returns:
        Parsed template

    Raises:
        TemplateError: If the file is missing, unreadable or invalid
    """
    template_path = Path(template_path)

    if not template_path.exists():
        raise TemplateError(f"Template file not found: {template_path}")

    try:
        with open(template_path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise TemplateError(f"Invalid YAML in template {template_path}: {e}") from e

    if not isinstance(data, dict):
        raise TemplateError(f"Template {template_path} must contain a mapping")

    try:
        template = MigrationTemplate.model_validate(data)
    except ValidationError as e:
        raise TemplateError(f"Invalid template {template_path}: {e}") from e

    logger.debug("template_loaded", template_id=template.id, path=str(template_path))
    return template


def validate_template_structure(template: MigrationTemplate) -> list[str]:
    """Report structural problems that model validation does not reject.

    Returns:
        List of problems (empty when the template is usable)
    """
    errors: list[str] = []

    if not template.id:
        errors.append("Template ID is required")
    if not template.name:
        errors.append("Template name is required")
    if not template.etl_steps:
        errors.append("Template must have at least one ETL step")
    if not template.execution_order:
        errors.append("Template must define execution order")

    step_names = {step.step_name for step in template.etl_steps}
    missing = [name for name in template.execution_order if name not in step_names]
    if missing:
        errors.append(f"Execution order references missing steps: {', '.join(missing)}")

    unordered = sorted(step_names - set(template.execution_order))
    if unordered:
        errors.append(f"Steps missing from execution order: {', '.join(unordered)}")

    position = {name: index for index, name in enumerate(template.execution_order)}
    for step in template.etl_steps:
        for dependency in step.dependencies:
            if dependency in position and step.step_name in position:
                if position[dependency] > position[step.step_name]:
                    errors.append(
                        f"Step '{step.step_name}' runs before its dependency '{dependency}'"
                    )

        handling = step.transform_config.external_id_handling
        for problem in ExternalIdResolver.validate_config(handling):
            errors.append(f"Step '{step.step_name}' external ID handling: {problem}")

        config = step.validation_config
        if config is None:
            continue
        cache_keys = {query.cache_key for query in config.pre_validation_queries}
        for check in config.dependency_checks:
            if check.cache_key and check.cache_key not in cache_keys:
                errors.append(
                    f"Dependency check '{check.check_name}' uses unknown cache key "
                    f"'{check.cache_key}'"
                )

    return errors


class TemplateRegistry:
    """In-memory collection of migration templates keyed by id."""

    def __init__(self) -> None:
        self._templates: dict[str, MigrationTemplate] = {}

    def register(self, template: MigrationTemplate) -> None:
        """Add or replace a template."""
        if template.id in self._templates:
            logger.debug("template_replaced", template_id=template.id)
        self._templates[template.id] = template

    def get(self, template_id: str) -> MigrationTemplate | None:
        return self._templates.get(template_id)

    def has_template(self, template_id: str) -> bool:
        return template_id in self._templates

    def remove(self, template_id: str) -> bool:
        """Remove a template; returns False when it was not registered."""
        return self._templates.pop(template_id, None) is not None

    def list_templates(self) -> list[MigrationTemplate]:
        return list(self._templates.values())

    def get_template_ids(self) -> list[str]:
        return list(self._templates)

    def get_by_category(self, category: str) -> list[MigrationTemplate]:
        return [t for t in self._templates.values() if t.category == category]

    def get_by_complexity(self, complexity: str) -> list[MigrationTemplate]:
        return [t for t in self._templates.values() if t.metadata.complexity == complexity]

    def search(self, term: str) -> list[MigrationTemplate]:
        """Templates whose name or description contains term (case-insensitive)."""
        term = term.lower()
        return [
            t
            for t in self._templates.values()
            if term in t.name.lower() or term in t.description.lower()
        ]

    def count(self) -> int:
        return len(self._templates)

    def clear(self) -> None:
        self._templates.clear()

    def load_directory(self, directory: str | Path) -> int:
        """Register every YAML template in a directory.

        Returns:
            Number of templates registered
        """
        directory = Path(directory)
        if not directory.is_dir():
            logger.debug("templates_dir_missing", path=str(directory))
            return 0

        loaded = 0
        for path in sorted(directory.iterdir()):
            if path.suffix in YAML_SUFFIXES:
                self.register(load_template_from_yaml(path))
                loaded += 1

        logger.info("templates_dir_loaded", path=str(directory), count=loaded)
        return loaded

    def resolve(self, reference: str) -> MigrationTemplate:
        """Return a template by id, or load it when reference is a YAML path.

        Raises:
            TemplateError: If the template cannot be found or loaded
        """
        if reference.endswith(YAML_SUFFIXES) or Path(reference).is_file():
            return load_template_from_yaml(reference)

        template = self.get(reference)
        if template is None:
            known = ", ".join(sorted(self._templates)) or "none"
            raise TemplateError(f"Unknown template '{reference}'. Available templates: {known}")
        return template


def create_default_registry(templates_dir: str | Path | None = None) -> TemplateRegistry:
    """Registry holding the built-in templates plus any YAML templates in templates_dir."""
    registry = TemplateRegistry()
    for template in BUILTIN_TEMPLATES:
        registry.register(template)
    if templates_dir is not None:
        registry.load_directory(templates_dir)
    return registry
