"""InfluxDB writer for Veeam metric points."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Optional

import aiohttp
from influxdb_client import Point
from influxdb_client.client.influxdb_client_async import InfluxDBClientAsync
from influxdb_client.rest import ApiException

from ..config.settings import InfluxConfig
from ..exceptions import InfluxConnectionError, WriteError
from ..models import MetricPoint


logger = logging.getLogger(__name__)


class InfluxWriter:
    """Buffers points during a cycle and writes them to InfluxDB on flush."""

    def __init__(self, config: InfluxConfig, client: Optional[InfluxDBClientAsync] = None):
        self.config = config
        self.client = client
        self._pending: List[Point] = []

        self.stats = {
            "points_written": 0,
            "flushes": 0,
            "write_errors": 0,
            "last_write_time": None
        }

        logger.info(f"InfluxWriter initialized for {config.host} (org={config.org}, bucket={config.bucket})")

    async def initialize(self):
        """Create the client and check the server is up."""
        if self.client is None:
            self.client = InfluxDBClientAsync(
                url=self.config.host,
                token=self.config.token,
                org=self.config.org,
            )
        await self.ping()
        logger.info("InfluxDB connection initialized successfully")

    async def ping(self) -> None:
        """Raise InfluxConnectionError unless the server answers /ping."""
        if self.client is None:
            raise InfluxConnectionError("InfluxDB client not initialized")
        try:
            ready = await self.client.ping()
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            raise InfluxConnectionError(f"influx db server not healthy: {e}") from e
        if not ready:
            raise InfluxConnectionError(f"influx db server not healthy: {self.config.host} did not answer ping")

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def write_point(self, point: MetricPoint) -> None:
        """Queue a point; points without a timestamp are stamped with the current time."""
        if self.client is None:
            raise WriteError(f"could not write {point.measurement}: InfluxDB client not initialized")
        if point.time is None:
            point.time = datetime.now(timezone.utc)
        self._pending.append(point.to_influx())

    async def flush(self) -> int:
        """Write every queued point in one batch; the queue is kept on failure."""
        if not self._pending:
            return 0
        if self.client is None:
            raise WriteError("could not flush points: InfluxDB client not initialized")

        batch = list(self._pending)
        try:
            await self.client.write_api().write(
                bucket=self.config.bucket,
                org=self.config.org,
                record=batch,
            )
        except (ApiException, aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            self.stats["write_errors"] += 1
            raise WriteError(f"could not write {len(batch)} points to InfluxDB: {e}") from e

        del self._pending[:len(batch)]
        self.stats["points_written"] += len(batch)
        self.stats["flushes"] += 1
        self.stats["last_write_time"] = datetime.now(timezone.utc)
        logger.debug(f"Flushed {len(batch)} points to bucket {self.config.bucket}")
        return len(batch)

    async def close(self):
        """Close the InfluxDB client."""
        if self.client is not None:
            logger.info("Closing InfluxDB connection")
            await self.client.close()
            self.client = None

    async def flush_and_close(self) -> None:
        """Best-effort final flush used on shutdown; errors are logged, not raised."""
        try:
            await self.flush()
        except WriteError as e:
            logger.error(f"Final flush failed, {self.pending} points dropped: {e}")
        finally:
            await self.close()
