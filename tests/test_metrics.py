"""Tests for the metrics recorder."""

from chatgate.metrics import LatencySeries, MetricsRecorder


def test_counters_start_at_zero():
    metrics = MetricsRecorder()

    assert metrics.counter("exchanges_started") == 0
    metrics.increment("exchanges_started")
    metrics.increment("exchanges_started", 2)
    assert metrics.counter("exchanges_started") == 3


def test_percentiles_use_nearest_rank():
    series = LatencySeries("tool.echo")
    for value in range(1, 101):
        series.add(float(value))

    assert series.percentile(50) == 51.0
    assert series.percentile(95) == 96.0
    assert series.percentile(99) == 100.0
    assert series.mean == 50.5


def test_empty_series_reports_zero():
    series = LatencySeries("exchange")

    assert series.summary() == {"count": 0, "mean": 0.0, "p50": 0.0, "p95": 0.0, "p99": 0.0}


def test_window_keeps_most_recent_samples():
    metrics = MetricsRecorder(max_samples=3)
    for value in (100.0, 1.0, 2.0, 3.0):
        metrics.record_latency("exchange", value)

    series = metrics.latency("exchange")
    assert list(series.samples) == [1.0, 2.0, 3.0]
    assert series.percentile(99) == 3.0


def test_snapshot_is_sorted_and_summarized():
    metrics = MetricsRecorder()
    metrics.increment("tool_failures")
    metrics.increment("exchanges_completed")
    metrics.record_latency("tool.echo", 4.0)
    metrics.record_latency("exchange", 10.0)
    metrics.record_latency("exchange", 20.0)

    snapshot = metrics.snapshot()

    assert list(snapshot["counters"]) == ["exchanges_completed", "tool_failures"]
    assert list(snapshot["latencies_ms"]) == ["exchange", "tool.echo"]
    assert snapshot["latencies_ms"]["exchange"] == {
        "count": 2,
        "mean": 15.0,
        "p50": 20.0,
        "p95": 20.0,
        "p99": 20.0,
    }
    assert metrics.latency("unknown") is None
