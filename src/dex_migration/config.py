"""Configuration management for DEX Bridge using Pydantic.

Configuration is read from a YAML file (with ``${VAR}`` substitution) and can
be overridden through environment variables using ``__`` as the nesting
delimiter, e.g. ``PERFORMANCE__MAX_IN_FLIGHT_BATCHES=5``.
"""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SourceConfig(BaseModel):
    """Connection settings for the DSS Data Exchange API."""

    url: str = Field(..., description="Base URL of the DEX API gateway")
    token: str = Field(..., description="API bearer token")
    verify_ssl: bool = Field(default=True, description="Verify SSL certificates")
    timeout: int = Field(default=60, ge=1, le=600, description="Request timeout in seconds")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate and normalize URL."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("URL must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("token")
    @classmethod
    def validate_token(cls, v: str) -> str:
        """Validate token is not empty."""
        if not v or v.strip() == "":
            raise ValueError("Token cannot be empty")
        return v


class StateConfig(BaseModel):
    """Local state database configuration."""

    db_path: str = Field(
        default="./dex_migration.db",
        description="SQLite file path or full database URL",
    )
    db_pool_size: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Number of connections to maintain in the pool (PostgreSQL only)",
    )
    db_max_overflow: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Maximum number of connections beyond pool_size (PostgreSQL only)",
    )
    db_pool_timeout: int = Field(
        default=30, ge=1, le=300, description="Seconds to wait for a pooled connection"
    )
    db_pool_recycle: int = Field(
        default=3600, ge=60, le=28800, description="Recycle connections after this many seconds"
    )


class PerformanceConfig(BaseModel):
    """Batching, concurrency and failure-policy tuning."""

    default_batch_size: int = Field(
        default=100, ge=1, le=1000, description="Batch size used when a request gives none"
    )
    max_batch_size: int = Field(
        default=500, ge=1, le=1000, description="Largest page size the source accepts"
    )
    max_in_flight_batches: int = Field(
        default=3, ge=1, le=20, description="Batches processed concurrently per migration"
    )
    batch_timeout: float = Field(
        default=300.0, gt=0, le=3600, description="Seconds before a batch fetch is abandoned"
    )
    failure_threshold: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Fraction of failed batches above which a migration is abandoned",
    )
    fallback_total_estimate: int = Field(
        default=100,
        ge=0,
        description="Item count assumed when the source reports no total",
    )
    rate_limit: int = Field(default=10, ge=1, le=100, description="Requests per second limit")
    max_connections: int = Field(
        default=20, ge=1, le=200, description="Maximum HTTP connections to the source"
    )

    @model_validator(mode="after")
    def validate_batch_sizes(self) -> "PerformanceConfig":
        """The default batch size must fit under the maximum."""
        if self.default_batch_size > self.max_batch_size:
            raise ValueError(
                f"default_batch_size ({self.default_batch_size}) cannot exceed "
                f"max_batch_size ({self.max_batch_size})"
            )
        return self


class EnrichmentConfig(BaseModel):
    """Enrichment pass configuration."""

    lock_name: str = Field(
        default="enrichment:process", description="Name of the single-flight advisory lock"
    )
    lock_ttl: int = Field(
        default=3600, ge=60, le=86400, description="Seconds before an abandoned lock expires"
    )
    progress_log_interval: int = Field(
        default=25, ge=1, description="Log progress every N enriched records"
    )


class VerificationConfig(BaseModel):
    """Sampling verification configuration."""

    sample_size: int = Field(default=20, ge=1, le=1000, description="Records sampled per kind")
    quick_sample_size: int = Field(
        default=5, ge=1, le=100, description="Records sampled per kind by quick verify"
    )


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
    format: str = Field(default="json", description="Log file format (json or console)")
    file: str | None = Field(default="logs/dex-bridge.log", description="Log file path")
    log_payloads: bool = Field(
        default=False,
        description="Log request/response payloads at DEBUG level (sensitive keys redacted)",
    )
    max_payload_size: int = Field(
        default=10000,
        ge=100,
        le=1000000,
        description="Maximum payload size (characters) to log before truncation",
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


class DexBridgeConfig(BaseSettings):
    """Root configuration."""

    model_config = SettingsConfigDict(
        env_prefix="",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    source: SourceConfig = Field(..., description="DEX API configuration")
    state: StateConfig = Field(default_factory=StateConfig, description="State configuration")
    performance: PerformanceConfig = Field(
        default_factory=PerformanceConfig, description="Performance configuration"
    )
    enrichment: EnrichmentConfig = Field(
        default_factory=EnrichmentConfig, description="Enrichment configuration"
    )
    verification: VerificationConfig = Field(
        default_factory=VerificationConfig, description="Verification configuration"
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )


def load_config_from_yaml(config_path: str | Path) -> DexBridgeConfig:
    """Load configuration from a YAML file.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        DexBridgeConfig: Loaded configuration

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config file is empty or references unset variables
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path) as f:
        config_data = yaml.safe_load(f)

    if not config_data:
        raise ValueError(f"Empty configuration file: {config_path}")

    return DexBridgeConfig(**_expand_env_vars(config_data))


def _expand_env_vars(data: Any) -> Any:
    """Recursively replace ``${VAR_NAME}`` strings with environment values."""
    if isinstance(data, dict):
        return {k: _expand_env_vars(v) for k, v in data.items()}
    if isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    if isinstance(data, str) and data.startswith("${") and data.endswith("}"):
        var_name = data[2:-1]
        env_value = os.environ.get(var_name)
        if env_value is None:
            raise ValueError(
                f"Environment variable '{var_name}' not found. "
                f"Please set it in your environment or .env file."
            )
        return env_value
    return data


def save_config_to_yaml(config: DexBridgeConfig, output_path: str | Path) -> None:
    """Write configuration to YAML with the API token redacted."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    config_dict = config.model_dump()
    config_dict["source"]["token"] = "${DEX_TOKEN}"

    with open(output_path, "w") as f:
        yaml.dump(config_dict, f, default_flow_style=False, sort_keys=False)
