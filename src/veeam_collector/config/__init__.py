"""Configuration loading for the Veeam metrics collector."""

from .settings import (
    CollectorConfig,
    HealthConfig,
    InfluxConfig,
    LoggingConfig,
    VeeamConfig,
    build_config,
    export_default_config,
    load_config,
)

__all__ = [
    "CollectorConfig",
    "HealthConfig",
    "InfluxConfig",
    "LoggingConfig",
    "VeeamConfig",
    "build_config",
    "export_default_config",
    "load_config",
]
