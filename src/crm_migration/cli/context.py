"""
CLI context for CRM Bridge.

Holds the configuration and template registry shared by every command.
"""

from dataclasses import dataclass, field
from pathlib import Path

from crm_migration.client.record_store import OrgConnectionManager
from crm_migration.config import MigrationConfig, load_config_from_yaml
from crm_migration.templates.registry import TemplateRegistry, create_default_registry
from crm_migration.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class MigrationContext:
    """
    Context object for CLI commands, passed via Click's context mechanism.

    Attributes:
        config_path: Path to configuration file
        log_level: Console logging level
        log_file: Optional log file path
    """

    config_path: Path | None = None
    log_level: str = "ERROR"
    log_file: Path | None = None

    _config: MigrationConfig | None = field(default=None, init=False, repr=False)
    _registry: TemplateRegistry | None = field(default=None, init=False, repr=False)

    @property
    def config(self) -> MigrationConfig:
        """Get or load migration configuration."""
        if self._config is None:
            if self.config_path is None:
                raise ValueError(
                    "Configuration file path not provided. "
                    "Use --config option or set CRM_BRIDGE_CONFIG environment variable."
                )

            logger.debug("loading_configuration", config_path=str(self.config_path))
            self._config = load_config_from_yaml(self.config_path)

        return self._config

    @property
    def registry(self) -> TemplateRegistry:
        """Built-in templates, plus the configured templates directory when a config is given."""
        if self._registry is None:
            templates_dir = self.config.paths.templates_dir if self.config_path else None
            self._registry = create_default_registry(templates_dir)
            logger.debug("template_registry_ready", count=self._registry.count())

        return self._registry

    def create_connections(self) -> OrgConnectionManager:
        """New connection manager for the configured orgs.

        Clients are bound to the event loop they are first used in, so each
        ``asyncio.run`` gets its own manager.
        """
        return OrgConnectionManager.from_config(self.config)
