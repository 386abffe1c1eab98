"""Configuration management for CRM Bridge using Pydantic.

This module provides type-safe configuration models for org connections,
HTTP performance tuning, validation limits, external ID field names and
logging.
"""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_MANAGED_EXTERNAL_ID_FIELD = "tc9_edc__External_ID_Data_Creation__c"
DEFAULT_UNMANAGED_EXTERNAL_ID_FIELD = "External_ID_Data_Creation__c"
DEFAULT_FALLBACK_EXTERNAL_ID_FIELD = "External_Id__c"


class PathConfig(BaseModel):
    """Configuration for file paths."""

    templates_dir: str = Field(
        default="templates", description="Directory scanned for YAML migration templates"
    )
    report_dir: str = Field(default="reports", description="Directory for validation reports")


class OrgConfig(BaseModel):
    """Connection settings for one org (source or target)."""

    instance_url: str = Field(..., description="Org instance URL")
    access_token: str = Field(..., description="OAuth access token")
    api_version: str = Field(default="61.0", description="REST API version")
    verify_ssl: bool = Field(default=True, description="Verify SSL certificates")
    timeout: int = Field(default=60, ge=1, le=600, description="Request timeout in seconds")

    @field_validator("instance_url")
    @classmethod
    def validate_instance_url(cls, v: str) -> str:
        """Validate and normalize the instance URL."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("Instance URL must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("access_token")
    @classmethod
    def validate_access_token(cls, v: str) -> str:
        """Validate token is not empty."""
        if not v or v.strip() == "":
            raise ValueError("Access token cannot be empty")
        return v

    @field_validator("api_version")
    @classmethod
    def validate_api_version(cls, v: str) -> str:
        """Accept '61.0' or 'v61.0'."""
        v = v.lstrip("vV")
        try:
            float(v)
        except ValueError as e:
            raise ValueError(f"Invalid API version: {v}") from e
        return v


class PerformanceConfig(BaseModel):
    """HTTP performance tuning configuration."""

    rate_limit: int = Field(default=20, ge=1, le=100, description="Requests per second limit")
    http_max_connections: int = Field(
        default=20, ge=1, le=200, description="Maximum connections in the pool"
    )
    http_max_keepalive_connections: int = Field(
        default=10, ge=1, le=100, description="Maximum keepalive connections"
    )
    retry_attempts: int = Field(
        default=3, ge=1, le=10, description="Attempts for transient network/server errors"
    )
    retry_backoff_min: int = Field(default=1, ge=1, le=60, description="Minimum backoff seconds")
    retry_backoff_max: int = Field(default=30, ge=1, le=300, description="Maximum backoff seconds")

    @model_validator(mode="after")
    def validate_backoff_range(self) -> "PerformanceConfig":
        """Ensure the backoff window is not inverted."""
        if self.retry_backoff_min > self.retry_backoff_max:
            raise ValueError("retry_backoff_min must not exceed retry_backoff_max")
        return self


class ValidationSettings(BaseModel):
    """Limits and behaviour of the pre-migration validation engine."""

    source_record_limit: int = Field(
        default=1000,
        ge=1,
        le=50000,
        description="LIMIT appended to source extraction queries that declare none",
    )
    picklist_fallback_limit: int = Field(
        default=1000,
        ge=1,
        le=50000,
        description="Rows fetched when a picklist field cannot be grouped",
    )
    multi_value_separator: str = Field(
        default=";", min_length=1, description="Separator of multi-select picklist values"
    )
    format_issues: bool = Field(
        default=True, description="Rewrite issue titles and messages for display"
    )


class ExternalIdSettings(BaseModel):
    """Candidate external ID field names, in detection priority order."""

    managed_field: str = Field(default=DEFAULT_MANAGED_EXTERNAL_ID_FIELD)
    unmanaged_field: str = Field(default=DEFAULT_UNMANAGED_EXTERNAL_ID_FIELD)
    fallback_field: str = Field(default=DEFAULT_FALLBACK_EXTERNAL_ID_FIELD)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(
        default="WARNING",
        description="Console log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    file_level: str = Field(
        default="DEBUG",
        description="File log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    format: str = Field(default="json", description="Log format (json or console)")
    file: str | None = Field(default="logs/crm-bridge.log", description="Log file path")
    log_payloads: bool = Field(
        default=False,
        description="Log request/response payloads at DEBUG level (tokens are redacted)",
    )
    max_payload_size: int = Field(
        default=10000,
        ge=100,
        le=1000000,
        description="Maximum payload size (characters) to log",
    )

    @field_validator("level", "file_level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of: {', '.join(valid_levels)}")
        return v_upper

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate log format."""
        valid_formats = ["json", "console"]
        v_lower = v.lower()
        if v_lower not in valid_formats:
            raise ValueError(f"Log format must be one of: {', '.join(valid_formats)}")
        return v_lower


class MigrationConfig(BaseSettings):
    """Main CRM Bridge configuration."""

    model_config = SettingsConfigDict(
        env_prefix="CRM_BRIDGE_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    orgs: dict[str, OrgConfig] = Field(
        default_factory=dict, description="Connected orgs keyed by org id"
    )
    paths: PathConfig = Field(default_factory=PathConfig, description="Path configuration")
    performance: PerformanceConfig = Field(
        default_factory=PerformanceConfig, description="Performance configuration"
    )
    validation: ValidationSettings = Field(
        default_factory=ValidationSettings, description="Validation configuration"
    )
    external_id: ExternalIdSettings = Field(
        default_factory=ExternalIdSettings, description="External ID field names"
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )

    def get_org(self, org_id: str) -> OrgConfig:
        """Return the connection settings for an org.

        Raises:
            KeyError: If the org is not configured
        """
        if org_id not in self.orgs:
            raise KeyError(f"Org '{org_id}' is not configured. Known orgs: {sorted(self.orgs)}")
        return self.orgs[org_id]


def load_config_from_yaml(config_path: str | Path) -> MigrationConfig:
    """Load configuration from YAML file.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        MigrationConfig: Loaded configuration

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config file is invalid
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path) as f:
        config_data = yaml.safe_load(f)

    if not config_data:
        raise ValueError(f"Empty configuration file: {config_path}")

    config_data = _expand_env_vars(config_data)

    return MigrationConfig(**config_data)


def _expand_env_vars(data: Any) -> Any:
    """Recursively expand environment variables in config data.

    Supports ${VAR_NAME} syntax for whole-value substitution.

    Args:
        data: Configuration data

    Returns:
        Data with expanded environment variables
    """
    if isinstance(data, dict):
        return {k: _expand_env_vars(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    elif isinstance(data, str):
        if data.startswith("${") and data.endswith("}"):
            var_name = data[2:-1]
            env_value = os.environ.get(var_name)
            if env_value is None:
                raise ValueError(
                    f"Environment variable '{var_name}' not found. "
                    f"Please set it in your environment or .env file."
                )
            return env_value
        return data
    else:
        return data


def save_config_to_yaml(config: MigrationConfig, output_path: str | Path) -> None:
    """Save configuration to YAML file with access tokens masked.

    Args:
        config: Configuration to save
        output_path: Path to output YAML file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    config_dict = config.model_dump()
    for org in config_dict.get("orgs", {}).values():
        org["access_token"] = "********"

    with open(output_path, "w") as f:
        yaml.dump(config_dict, f, default_flow_style=False, sort_keys=False)
