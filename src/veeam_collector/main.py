"""Veeam metrics collector service - periodic Veeam B&R state to InfluxDB."""

import argparse
import asyncio
import logging
import os
import signal
import sys
from typing import List, Optional

from .clients.veeam_rest import VeeamRESTClient
from .collector import VeeamCollector
from .config.settings import CollectorConfig, export_default_config, load_config
from .exceptions import CollectorError, ConfigError, ConfigExported
from .health import HealthCheckHandler, HealthCheckServer
from .metrics import CollectorMetrics
from .scheduler import CollectionScheduler, FailureSignal
from .utils.logging import setup_logging
from .writers.influx_writer import InfluxWriter


logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class CollectorService:
    """Wires the Veeam client, InfluxDB writer, health endpoint and scheduler together."""

    def __init__(self, config: CollectorConfig):
        self.config = config
        self.client = VeeamRESTClient(config.veeam)
        self.collector = VeeamCollector(self.client)
        self.writer = InfluxWriter(config.influx)
        self.metrics = CollectorMetrics()
        self.failure_signal = FailureSignal()
        self.scheduler: Optional[CollectionScheduler] = None
        self.health_server: Optional[HealthCheckServer] = None
        self._shutdown_event = asyncio.Event()
        self._signals_installed = False

        logger.info("Veeam collector service initialized")

    async def start(self):
        """Run until a shutdown signal (returns) or an unrecoverable error (raises)."""
        clean_exit = False
        try:
            await self._startup()
            if self._shutdown_event.is_set():
                logger.info("Shutdown requested during startup, skipping collection")
            else:
                await self.scheduler.run()
            clean_exit = True
        finally:
            await self._shutdown(flush=clean_exit)

    async def _startup(self):
        logger.info("Starting Veeam collector service")
        self._setup_signal_handlers()

        await self.client.open()
        try:
            server_info = await self.collector.probe()
        except CollectorError as e:
            logger.error(f"Could not connect to veeam server: {e}")
            raise

        try:
            await self.writer.initialize()
        except CollectorError as e:
            logger.error(f"Could not create influx client: {e}")
            raise

        self.scheduler = CollectionScheduler(
            self.config,
            self.collector,
            self.writer,
            server_info,
            failure_signal=self.failure_signal,
            shutdown_event=self._shutdown_event,
            metrics=self.metrics,
        )

        handler = HealthCheckHandler(self.collector, self.writer, self.failure_signal, self.metrics)
        self.health_server = HealthCheckServer(handler, self.config.health)
        await self.health_server.start()

    async def _shutdown(self, flush: bool):
        """Release everything; only a clean stop gets the final flush."""
        logger.info("Shutting down Veeam collector service")
        self._remove_signal_handlers()

        if self.health_server:
            await self.health_server.stop()

        if flush:
            await self.writer.flush_and_close()
        else:
            await self.writer.close()

        await self.client.close()
        logger.info("Veeam collector service stopped")

    def _setup_signal_handlers(self):
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()
        for signum in SHUTDOWN_SIGNALS:
            loop.add_signal_handler(signum, self._handle_signal, signum)
        self._signals_installed = True

    def _remove_signal_handlers(self):
        if not self._signals_installed:
            return
        loop = asyncio.get_running_loop()
        for signum in SHUTDOWN_SIGNALS:
            loop.remove_signal_handler(signum)
        self._signals_installed = False

    def _handle_signal(self, signum: int):
        logger.info(f"Shutdown signal received ({signal.Signals(signum).name})")
        self._shutdown_event.set()


async def run_service(config: CollectorConfig) -> int:
    """Run the service and translate its outcome into an exit status."""
    service = CollectorService(config)
    try:
        await service.start()
    except CollectorError as e:
        logger.error(f"Service failed: {e}")
        return 1
    except Exception as e:
        logger.error(f"Service failed: {e}", exc_info=True)
        return 1
    return 0


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="veeam-collector",
        description="Collect Veeam Backup & Replication metrics into InfluxDB",
    )
    parser.add_argument(
        "--config",
        default=os.getenv("CONFIG_FILE", "config.yaml"),
        help="Path to config file (default: $CONFIG_FILE or config.yaml)",
    )
    parser.add_argument(
        "--export",
        action="store_true",
        help="Write a config file with default values to --config and exit",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    logging.basicConfig(level=logging.INFO)
    args = parse_args(argv)

    if args.export:
        try:
            export_default_config(args.config)
        except ConfigExported:
            return 0
        except ConfigError as e:
            logger.error(str(e))
            return 1

    try:
        config = load_config(args.config)
    except ConfigError as e:
        logger.error(f"Could not create config: {e}")
        return 1

    setup_logging(config.logging)
    return asyncio.run(run_service(config))


def cli():
    sys.exit(main())


if __name__ == "__main__":
    cli()
