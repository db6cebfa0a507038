"""Health check endpoint for the collector service."""

import logging
import time
from typing import Optional

from aiohttp import web, web_request
from aiohttp.web_response import Response

from .collector import VeeamCollector
from .config.settings import HealthConfig
from .exceptions import HealthCheckError, HealthServerStartupError
from .metrics import CollectorMetrics
from .scheduler import FailureSignal
from .writers.influx_writer import InfluxWriter


logger = logging.getLogger(__name__)

METRICS_PATH = "/metrics"


class HealthCheckHandler:
    """Probes InfluxDB, then Veeam, and reports the first failure to the scheduler."""

    def __init__(
        self,
        collector: VeeamCollector,
        writer: InfluxWriter,
        failure_signal: FailureSignal,
        metrics: Optional[CollectorMetrics] = None,
    ):
        self.collector = collector
        self.writer = writer
        self.failure_signal = failure_signal
        self.metrics = metrics

    async def health(self, request: web_request.Request) -> Response:
        started = time.monotonic()
        logger.info("Running health check probe")

        try:
            await self.writer.ping()
        except Exception as e:
            return self._unhealthy("influxdb", e, started)

        try:
            await self.collector.probe()
        except Exception as e:
            return self._unhealthy("veeam", e, started)

        duration_ms = (time.monotonic() - started) * 1000
        logger.info(f"Health check endpoint done, duration={duration_ms:.0f}ms")
        return web.json_response({"status": "ok"}, status=200)

    def _unhealthy(self, component: str, error: Exception, started: float) -> Response:
        duration_ms = (time.monotonic() - started) * 1000
        logger.error(f"Health check failed for {component}: {error}, duration={duration_ms:.0f}ms")
        self.failure_signal.notify(HealthCheckError(component, error))
        return web.json_response(
            {"status": "error", "component": component, "error": str(error)},
            status=500
        )

    async def prometheus(self, request: web_request.Request) -> Response:
        body, content_type = self.metrics.render()
        return web.Response(body=body, headers={"Content-Type": content_type})


class HealthCheckServer:
    """HTTP server for the health check endpoint."""

    def __init__(self, handler: HealthCheckHandler, config: HealthConfig):
        self.handler = handler
        self.config = config
        self.app: Optional[web.Application] = None
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get(self.config.endpoint, self.handler.health)
        if self.handler.metrics is not None and self.config.endpoint != METRICS_PATH:
            app.router.add_get(METRICS_PATH, self.handler.prometheus)
        return app

    async def start(self):
        """Start serving; a bind failure raises HealthServerStartupError."""
        logger.info(f"Starting health check server on {self.config.host}:{self.config.port}")

        self.app = self.create_app()
        self.runner = web.AppRunner(self.app, access_log=None)
        await self.runner.setup()

        self.site = web.TCPSite(self.runner, self.config.host, self.config.port)
        try:
            await self.site.start()
        except OSError as e:
            await self.runner.cleanup()
            self.site = None
            self.runner = None
            logger.error(f"Failed to start healthcheck endpoint: {e}")
            raise HealthServerStartupError(
                f"could not bind health endpoint on {self.config.host}:{self.config.port}: {e}"
            ) from e

        logger.info(
            f"Health check endpoint started on http://{self.config.host}:{self.config.port}{self.config.endpoint}"
        )

    async def stop(self):
        """Stop the health check server."""
        logger.info("Stopping health check server")

        if self.site:
            await self.site.stop()

        if self.runner:
            await self.runner.cleanup()

        logger.info("Health check server stopped")
