"""Prometheus-compatible metrics for relay observability.

Tracks connection lifecycle, message flow and persistence health in memory
and renders them in Prometheus exposition format for the /metrics endpoint.
"""

import logging
import threading
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class HistogramBucket:
    """Histogram bucket for duration distributions."""

    le: float  # Upper bound (less-than-or-equal)
    count: int = 0  # Cumulative observations <= le


@dataclass
class Histogram:
    """Histogram metric with fixed bucket boundaries (seconds)."""

    name: str
    help: str
    buckets: list[HistogramBucket] = field(
        default_factory=lambda: [
            HistogramBucket(le=1.0),
            HistogramBucket(le=10.0),
            HistogramBucket(le=60.0),
            HistogramBucket(le=600.0),
            HistogramBucket(le=3600.0),
            HistogramBucket(le=float("inf")),
        ]
    )
    sum: float = 0.0
    count: int = 0

    def observe(self, value: float) -> None:
        self.sum += value
        self.count += 1
        for bucket in self.buckets:
            if value <= bucket.le:
                bucket.count += 1


@dataclass
class Counter:
    """Counter metric (monotonically increasing)."""

    name: str
    help: str
    value: float = 0.0

    def inc(self, amount: float = 1.0) -> None:
        self.value += amount


@dataclass
class Gauge:
    """Gauge metric (can go up or down)."""

    name: str
    help: str
    value: float = 0.0

    def set(self, value: float) -> None:
        self.value = value

    def inc(self, amount: float = 1.0) -> None:
        self.value += amount

    def dec(self, amount: float = 1.0) -> None:
        self.value -= amount


class MetricsCollector:
    """Metrics collector with Prometheus-compatible output.

    One collector belongs to one relay server instance.
    """

    def __init__(self, prefix: str = "overlay_relay") -> None:
        self._lock = threading.RLock()
        self._prefix = prefix

        self._counters: dict[str, Counter] = {}
        self._gauges: dict[str, Gauge] = {}
        self._histograms: dict[str, Histogram] = {}

        for name, help_text in [
            ("connections_accepted_total", "Connections that passed authentication"),
            ("connections_rejected_total", "Connections closed for a bad or missing token"),
            ("rate_limit_closes_total", "Connections closed for exceeding the rate limit"),
            ("messages_received_total", "Inbound messages counted against the rate limit"),
            ("messages_malformed_total", "Inbound messages that were not valid JSON"),
            ("state_updates_total", "config:update messages merged into shared state"),
            ("persistence_errors_total", "Failed writes of the state snapshot"),
            ("broadcasts_total", "State broadcasts sent to registered connections"),
        ]:
            self._counters[name] = Counter(name=self._qualify(name), help=help_text)

        self._gauges["connections_active"] = Gauge(
            name=self._qualify("connections_active"),
            help="Registered (authenticated, open) connections",
        )
        self._gauges["state_keys"] = Gauge(
            name=self._qualify("state_keys"),
            help="Top-level keys in the shared state",
        )
        self._histograms["connection_duration_seconds"] = Histogram(
            name=self._qualify("connection_duration_seconds"),
            help="Lifetime of authenticated connections in seconds",
        )

    def _qualify(self, name: str) -> str:
        return f"{self._prefix}_{name}" if self._prefix else name

    # === Recording ===

    def inc(self, name: str, amount: float = 1.0) -> None:
        """Increment a counter by short name (e.g. ``state_updates_total``)."""
        with self._lock:
            self._counters[name].inc(amount)

    def record_connection_open(self) -> None:
        with self._lock:
            self._counters["connections_accepted_total"].inc()
            self._gauges["connections_active"].inc()

    def record_connection_close(self, duration_seconds: float) -> None:
        with self._lock:
            self._gauges["connections_active"].dec()
            self._histograms["connection_duration_seconds"].observe(duration_seconds)

    def set_state_keys(self, count: int) -> None:
        with self._lock:
            self._gauges["state_keys"].set(float(count))

    def counter_value(self, name: str) -> float:
        with self._lock:
            return self._counters[name].value

    def gauge_value(self, name: str) -> float:
        with self._lock:
            return self._gauges[name].value

    # === Export ===

    def export_prometheus(self) -> str:
        """Export all metrics in Prometheus exposition format."""
        with self._lock:
            lines: list[str] = []

            for counter in self._counters.values():
                lines.append(f"# HELP {counter.name} {counter.help}")
                lines.append(f"# TYPE {counter.name} counter")
                lines.append(f"{counter.name} {counter.value}")

            for gauge in self._gauges.values():
                lines.append(f"# HELP {gauge.name} {gauge.help}")
                lines.append(f"# TYPE {gauge.name} gauge")
                lines.append(f"{gauge.name} {gauge.value}")

            for histogram in self._histograms.values():
                lines.append(f"# HELP {histogram.name} {histogram.help}")
                lines.append(f"# TYPE {histogram.name} histogram")
                for bucket in histogram.buckets:
                    le = "+Inf" if bucket.le == float("inf") else str(bucket.le)
                    lines.append(f'{histogram.name}_bucket{{le="{le}"}} {bucket.count}')
                lines.append(f"{histogram.name}_sum {histogram.sum}")
                lines.append(f"{histogram.name}_count {histogram.count}")

            return "\n".join(lines) + "\n"

    def get_summary(self) -> dict[str, float]:
        """Get key metrics as a flat mapping for dashboards."""
        with self._lock:
            summary = {name: c.value for name, c in self._counters.items()}
            summary.update({name: g.value for name, g in self._gauges.items()})
            return summary
