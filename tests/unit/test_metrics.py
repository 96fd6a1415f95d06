"""Unit tests for relay metrics collection."""

from overlay_relay.metrics import Histogram, MetricsCollector


def test_histogram_buckets_are_cumulative() -> None:
    hist = Histogram(name="h", help="test")
    hist.observe(0.5)
    hist.observe(30.0)

    counts = {b.le: b.count for b in hist.buckets}
    assert counts[1.0] == 1
    assert counts[60.0] == 2
    assert counts[float("inf")] == 2
    assert hist.count == 2
    assert hist.sum == 30.5


def test_connection_open_close_updates_gauge() -> None:
    collector = MetricsCollector()
    collector.record_connection_open()
    collector.record_connection_open()
    collector.record_connection_close(1.5)

    assert collector.gauge_value("connections_active") == 1.0
    assert collector.counter_value("connections_accepted_total") == 2.0


def test_export_prometheus_format() -> None:
    collector = MetricsCollector()
    collector.inc("state_updates_total")
    collector.set_state_keys(4)

    text = collector.export_prometheus()
    assert "# TYPE overlay_relay_state_updates_total counter" in text
    assert "overlay_relay_state_updates_total 1.0" in text
    assert "overlay_relay_state_keys 4.0" in text
    assert 'overlay_relay_connection_duration_seconds_bucket{le="+Inf"} 0' in text
    assert text.endswith("\n")


def test_summary_contains_counters_and_gauges() -> None:
    collector = MetricsCollector()
    collector.inc("rate_limit_closes_total")

    summary = collector.get_summary()
    assert summary["rate_limit_closes_total"] == 1.0
    assert summary["connections_active"] == 0.0
