"""Prometheus metrics describing the collector itself."""

from typing import Dict, Optional, Tuple

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Histogram, generate_latest


class CollectorMetrics:
    """Counters and timings for collection cycles, in a private registry."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        self.cycles_total = Counter(
            'veeam_collector_cycles_total',
            'Collection cycles by outcome',
            ['outcome'],
            registry=self.registry,
        )
        self.points_written_total = Counter(
            'veeam_collector_points_written_total',
            'Points written to InfluxDB',
            ['measurement'],
            registry=self.registry,
        )
        self.records_skipped_total = Counter(
            'veeam_collector_records_skipped_total',
            'Records dropped while mapping',
            ['reason'],
            registry=self.registry,
        )
        self.cycle_duration = Histogram(
            'veeam_collector_cycle_duration_seconds',
            'Time spent fetching, mapping and writing one cycle',
            buckets=(1, 5, 10, 30, 60, 120, 300, 600, 1800),
            registry=self.registry,
        )

    def record_cycle(
        self,
        outcome: str,
        duration_seconds: float,
        written: Optional[Dict[str, int]] = None,
        skipped: Optional[Dict[str, int]] = None,
    ) -> None:
        self.cycles_total.labels(outcome=outcome).inc()
        self.cycle_duration.observe(duration_seconds)
        for measurement, count in (written or {}).items():
            self.points_written_total.labels(measurement=measurement).inc(count)
        for reason, count in (skipped or {}).items():
            self.records_skipped_total.labels(reason=reason).inc(count)

    def render(self) -> Tuple[bytes, str]:
        """Exposition body and its content type."""
        return generate_latest(self.registry), CONTENT_TYPE_LATEST
