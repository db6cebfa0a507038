"""Configuration settings for the Veeam metrics collector."""

import copy
import logging
import os
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional

import yaml

from ..exceptions import ConfigError, ConfigExported


logger = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
LOG_FORMATS = ("text", "json")

# Environment variables that take precedence over the config file
ENV_OVERRIDES = {
    "VEEAM_ADMIN_USERNAME": ("veeam", "username"),
    "VEEAM_ADMIN_PASSWORD": ("veeam", "password"),
    "INFLUXDB_TOKEN": ("influx", "token"),
    "INFLUXDB_ORG_NAME": ("influx", "org"),
}


@dataclass
class VeeamConfig:
    """Veeam Backup & Replication REST API configuration."""
    host: str = "https://veeam.server:9419"
    x_api_version: str = "1.2-rev0"
    trust_self_signed_cert: bool = False
    username: str = "<veeam-admin or VEEAM_ADMIN_USERNAME>"
    password: str = "<veeam-admin-password or VEEAM_ADMIN_PASSWORD>"
    excluded_job_types: List[str] = field(
        default_factory=lambda: ["MalwareDetection", "SecurityComplianceAnalyzer"]
    )
    request_timeout_seconds: Optional[float] = None

    @property
    def excluded_job_type_set(self) -> FrozenSet[str]:
        return frozenset(self.excluded_job_types)


@dataclass
class InfluxConfig:
    """InfluxDB 2.x configuration."""
    host: str = "http://influxdb:8086"
    token: str = "<influxdb-token or INFLUXDB_TOKEN>"
    org: str = "<influxdb-org-name or INFLUXDB_ORG_NAME>"
    bucket: str = "<influxdb-bucket-name>"


@dataclass
class HealthConfig:
    """Health check endpoint configuration."""
    host: str = "0.0.0.0"
    port: int = 8080
    endpoint: str = "/health"


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    format: str = "text"
    output: str = "stdout"


@dataclass
class CollectorConfig:
    """Main configuration for the collector service."""
    veeam: VeeamConfig = field(default_factory=VeeamConfig)
    influx: InfluxConfig = field(default_factory=InfluxConfig)
    interval_seconds: int = 3600
    health: HealthConfig = field(default_factory=HealthConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def load_config(config_file: str) -> CollectorConfig:
    """Load configuration from a YAML file merged over the defaults."""

    try:
        with open(config_file, 'r') as f:
            config_data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"error opening config file {config_file}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"error parsing config file {config_file}: {e}") from e

    if not isinstance(config_data, dict):
        raise ConfigError(f"config file {config_file} must contain a mapping")

    config_data = _substitute_env_vars(config_data)

    # Older config files carry the log level at the top level
    legacy_level = config_data.pop("log_level", None)
    if legacy_level is not None:
        config_data.setdefault("logging", {}).setdefault("level", legacy_level)

    merged = _deep_merge(CollectorConfig().to_dict(), config_data)
    _apply_env_overrides(merged)

    return build_config(merged)


def build_config(config_data: Dict[str, Any]) -> CollectorConfig:
    """Create and validate configuration objects from a plain mapping."""
    try:
        config = CollectorConfig(
            veeam=VeeamConfig(**config_data.get('veeam', {})),
            influx=InfluxConfig(**config_data.get('influx', {})),
            interval_seconds=config_data.get('interval_seconds', 3600),
            health=HealthConfig(**config_data.get('health', {})),
            logging=LoggingConfig(**config_data.get('logging', {})),
        )
    except TypeError as e:
        raise ConfigError(f"unknown configuration key: {e}") from e

    validate_config(config)
    return config


def validate_config(config: CollectorConfig) -> None:
    """Raise ConfigError for values the collector cannot run with."""
    try:
        config.interval_seconds = int(config.interval_seconds)
        config.health.port = int(config.health.port)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"interval_seconds and health.port must be integers: {e}") from e

    # ${ENV} substitution yields strings
    if isinstance(config.veeam.trust_self_signed_cert, str):
        config.veeam.trust_self_signed_cert = config.veeam.trust_self_signed_cert.lower() in ("1", "true", "yes")

    if config.veeam.request_timeout_seconds is not None:
        try:
            config.veeam.request_timeout_seconds = float(config.veeam.request_timeout_seconds)
        except (TypeError, ValueError) as e:
            raise ConfigError(
                f"veeam.request_timeout_seconds must be a number: {e}",
                field_name="veeam.request_timeout_seconds"
            ) from e

    if config.interval_seconds <= 0:
        raise ConfigError("interval_seconds must be greater than zero", field_name="interval_seconds")

    if not 0 < config.health.port < 65536:
        raise ConfigError(f"invalid health port: {config.health.port}", field_name="health.port")

    if not config.health.endpoint.startswith("/"):
        raise ConfigError(
            f"health endpoint must start with '/': {config.health.endpoint}",
            field_name="health.endpoint"
        )

    if not config.veeam.host:
        raise ConfigError("veeam.host is required", field_name="veeam.host")

    if not config.influx.host:
        raise ConfigError("influx.host is required", field_name="influx.host")

    if not isinstance(config.veeam.excluded_job_types, list):
        raise ConfigError(
            "veeam.excluded_job_types must be a list",
            field_name="veeam.excluded_job_types"
        )

    config.logging.level = str(config.logging.level).upper()
    if config.logging.level not in LOG_LEVELS:
        raise ConfigError(f"unknown log level: {config.logging.level}", field_name="logging.level")

    config.logging.format = str(config.logging.format).lower()
    if config.logging.format not in LOG_FORMATS:
        raise ConfigError(f"unknown log format: {config.logging.format}", field_name="logging.format")


def export_default_config(path: str = "config.yaml") -> None:
    """Write the default configuration to ``path`` and raise ConfigExported."""
    try:
        with open(path, 'w') as f:
            yaml.safe_dump(CollectorConfig().to_dict(), f, default_flow_style=False, sort_keys=False)
    except OSError as e:
        raise ConfigError(f"error creating config file: {e}") from e

    logger.info(f"Config file example created: {path}")
    raise ConfigExported(path)


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``."""
    result = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _apply_env_overrides(config_data: Dict[str, Any]) -> None:
    for env_name, (section, key) in ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value:
            config_data.setdefault(section, {})[key] = value


def _substitute_env_vars(data):
    """Recursively substitute environment variables in configuration."""
    if isinstance(data, dict):
        return {key: _substitute_env_vars(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [_substitute_env_vars(item) for item in data]
    elif isinstance(data, str) and data.startswith('${') and data.endswith('}'):
        # Extract environment variable name and default value
        env_spec = data[2:-1]

        if ':' in env_spec:
            env_name, default_value = env_spec.split(':', 1)
        else:
            env_name, default_value = env_spec, None

        return os.getenv(env_name, default_value)
    else:
        return data
