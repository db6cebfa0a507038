"""Exception classes for the Veeam metrics collector."""

from typing import Any, Dict, Optional


class CollectorError(Exception):
    """Base exception for collector failures."""

    def __init__(
        self,
        message: str,
        component: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.component = component
        self.context = context or {}


class ConnectivityError(CollectorError):
    """A collaborator could not be reached or answered with a non-2xx status."""


class VeeamConnectionError(ConnectivityError):
    """Transport or status failure talking to the Veeam REST API."""

    def __init__(self, message: str, status: Optional[int] = None, **kwargs):
        kwargs.setdefault("component", "veeam")
        super().__init__(message, **kwargs)
        self.status = status


class InfluxConnectionError(ConnectivityError):
    """InfluxDB did not answer the health probe."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("component", "influxdb")
        super().__init__(message, **kwargs)


class DecodeError(CollectorError):
    """A response body could not be decoded into the expected records."""


class WriteError(CollectorError):
    """Points could not be written to or flushed into InfluxDB."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("component", "influxdb")
        super().__init__(message, **kwargs)


class HealthCheckError(CollectorError):
    """A health probe failed; raised by the scheduler to stop the loop."""

    def __init__(self, component: str, cause: BaseException):
        super().__init__(f"health check failed for {component}: {cause}", component=component)
        self.cause = cause


class HealthServerStartupError(CollectorError):
    """The health endpoint could not bind its listening socket."""


class ConfigError(CollectorError):
    """Configuration file is missing, malformed or invalid."""

    def __init__(self, message: str, field_name: Optional[str] = None):
        super().__init__(message, context={"field": field_name} if field_name else None)
        self.field_name = field_name


class ConfigExported(Exception):
    """Raised after the default configuration was written on request."""

    def __init__(self, path: str):
        super().__init__(f"config file example created: {path}")
        self.path = path
