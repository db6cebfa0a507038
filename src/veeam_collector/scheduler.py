"""Scheduler driving periodic Veeam metric collection."""

import asyncio
import logging
from typing import Dict, Iterable, Optional

from .collector import VeeamCollector
from .config.settings import CollectorConfig
from .exceptions import CollectorError, HealthCheckError
from .mapper import (
    SkipCounter,
    map_backup_objects,
    map_managed_servers,
    map_proxies,
    map_repositories,
    map_server_info,
    map_sessions,
)
from .metrics import CollectorMetrics
from .models import MetricPoint, ServerInfo
from .utils.logging import log_performance
from .writers.influx_writer import InfluxWriter


logger = logging.getLogger(__name__)


class FailureSignal:
    """Single-slot channel from the health endpoint to the scheduler.

    The first reported error is kept; later reports are ignored. The
    scheduler only looks at it between cycles.
    """

    def __init__(self):
        self._future: Optional[asyncio.Future] = None

    def _get_future(self) -> asyncio.Future:
        if self._future is None:
            self._future = asyncio.get_running_loop().create_future()
        return self._future

    @property
    def is_set(self) -> bool:
        return self._future is not None and self._future.done()

    @property
    def error(self) -> Optional[HealthCheckError]:
        return self._future.result() if self.is_set else None

    def notify(self, error: HealthCheckError) -> bool:
        """Report a failure; returns False if one was already pending."""
        future = self._get_future()
        if future.done():
            logger.debug(f"Failure already signalled, ignoring: {error}")
            return False
        future.set_result(error)
        return True

    async def wait(self) -> HealthCheckError:
        return await asyncio.shield(self._get_future())


class CollectionScheduler:
    """Runs fetch → map → write → flush on a fixed interval."""

    def __init__(
        self,
        config: CollectorConfig,
        collector: VeeamCollector,
        writer: InfluxWriter,
        server_info: ServerInfo,
        failure_signal: Optional[FailureSignal] = None,
        shutdown_event: Optional[asyncio.Event] = None,
        metrics: Optional[CollectorMetrics] = None,
    ):
        self.config = config
        self.collector = collector
        self.writer = writer
        self.server_info = server_info
        self.failure_signal = failure_signal or FailureSignal()
        self.shutdown_event = shutdown_event or asyncio.Event()
        self.metrics = metrics or CollectorMetrics()
        self.cycles_completed = 0
        self._running = False

        logger.info(f"Scheduler initialized with interval: {config.interval_seconds}s")

    @property
    def running(self) -> bool:
        return self._running

    def stop(self):
        """Ask the loop to return after the current cycle."""
        self.shutdown_event.set()

    async def run(self) -> None:
        """Collect until shutdown (returns) or a cycle/health failure (raises)."""
        self._running = True
        interval = self.config.interval_seconds
        loop = asyncio.get_running_loop()
        next_run = loop.time()

        logger.info("Veeam metrics collector started")
        logger.info(f"Gathering data on time interval: {interval} seconds")

        try:
            while True:
                next_run += interval
                await self.run_cycle()

                # An overrun gets one immediate cycle; the other missed ticks are dropped
                now = loop.time()
                if next_run < now:
                    missed = int((now - next_run) // interval)
                    if missed:
                        logger.warning(f"Collection cycle overran the interval, skipping {missed} missed run(s)")
                    next_run += missed * interval

                if not await self._wait_for_next_cycle(next_run):
                    logger.info("Collection loop stopped")
                    return
        finally:
            self._running = False

    async def run_cycle(self) -> Dict[str, int]:
        """One full cycle; returns points written per measurement."""
        loop = asyncio.get_running_loop()
        started = loop.time()
        skipped = SkipCounter()
        written: Dict[str, int] = {}

        try:
            snapshot = await self.collector.collect_cycle()

            logger.info("Storing data...")
            host = self.config.veeam.host

            logger.info("Storing veeam server info into database")
            await self._write_points([map_server_info(self.server_info, host)], written)

            logger.info("Storing sessions into database")
            await self._write_points(
                map_sessions(snapshot.sessions, host, self.config.veeam.excluded_job_type_set, skipped),
                written,
            )

            logger.info("Storing managed servers into database")
            await self._write_points(map_managed_servers(snapshot.managed_servers, host), written)

            logger.info("Storing repositories into database")
            await self._write_points(
                map_repositories(snapshot.repositories, snapshot.repository_states, host, skipped),
                written,
            )

            logger.info("Storing proxies into database")
            await self._write_points(map_proxies(snapshot.proxies, host), written)

            logger.info("Storing backup objects into database")
            await self._write_points(map_backup_objects(snapshot.backup_objects, host), written)

            await self.writer.flush()

        except CollectorError as e:
            logger.error(f"Collection cycle failed: {e}")
            self.metrics.record_cycle("failed", loop.time() - started, skipped=skipped.counts)
            raise

        duration = loop.time() - started
        self.metrics.record_cycle("success", duration, written=written, skipped=skipped.counts)
        self.cycles_completed += 1

        if skipped.counts:
            logger.debug(f"Records skipped: {skipped.counts}")
        log_performance(logger, "collection cycle", duration * 1000, points=sum(written.values()))
        logger.info("Veeam metrics collection successfully completed")
        return written

    async def _write_points(self, points: Iterable[MetricPoint], written: Dict[str, int]) -> None:
        for point in points:
            await self.writer.write_point(point)
            written[point.measurement] = written.get(point.measurement, 0) + 1

    async def _wait_for_next_cycle(self, deadline: float) -> bool:
        """Block until the next tick (True), shutdown (False) or a health failure (raises)."""
        loop = asyncio.get_running_loop()

        if not self._should_stop():
            delay = max(0.0, deadline - loop.time())
            logger.debug(f"Waiting {delay:.0f} seconds for next collection")

            waiters = [
                asyncio.ensure_future(self.failure_signal.wait()),
                asyncio.ensure_future(self.shutdown_event.wait()),
                asyncio.ensure_future(asyncio.sleep(delay)),
            ]
            try:
                await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
            finally:
                for waiter in waiters:
                    waiter.cancel()
                await asyncio.gather(*waiters, return_exceptions=True)

        return not self._should_stop()

    def _should_stop(self) -> bool:
        if self.failure_signal.is_set:
            error = self.failure_signal.error
            logger.error(f"Stopping collection: {error}")
            raise error
        return self.shutdown_event.is_set()
