"""
Test rollout metrics aggregation: counters, latency window and percentiles
"""
import random

import pytest

from monitoring.metrics import MetricsAggregator, RolloutMetrics, Sentiment


def test_success_rate_is_100_without_requests():
    """An empty aggregate reports full success"""
    metrics = MetricsAggregator()

    assert metrics.requests == 0
    assert metrics.success_rate_percent == 100.0
    assert metrics.error_rate == 0.0
    assert metrics.p95_latency_ms == 0.0


def test_success_rate_and_error_rate():
    metrics = MetricsAggregator()

    for _ in range(3):
        metrics.record(100, success=True)
    metrics.record(100, success=False)

    assert metrics.requests == 4
    assert metrics.errors == 1
    assert metrics.success_rate_percent == pytest.approx(75.0)
    assert metrics.error_rate == pytest.approx(0.25)


def test_errors_never_exceed_requests():
    """Random record sequences keep errors <= requests at every step"""
    rng = random.Random(42)
    metrics = MetricsAggregator()

    for _ in range(2000):
        metrics.record(rng.uniform(1, 3000), success=rng.random() > 0.3)
        assert metrics.errors <= metrics.requests
        assert 0.0 <= metrics.success_rate_percent <= 100.0


def test_latency_window_evicts_oldest_first():
    """10,001 distinct samples leave the first one out of the window"""
    metrics = MetricsAggregator()

    for value in range(10001):
        metrics.record(float(value), success=True)

    assert metrics.window_size == 10000
    assert metrics.window_capacity == 10000
    latencies = metrics.latencies
    assert 0.0 not in latencies
    assert latencies[0] == 1.0
    assert latencies[-1] == 10000.0

    # Counters are not windowed
    assert metrics.requests == 10001
    assert len(metrics._sorted_latencies) == 10000


def test_custom_window_size():
    metrics = MetricsAggregator(window_size=3)

    for value in [10, 20, 30, 40]:
        metrics.record(value, success=True)

    assert metrics.latencies == [20.0, 30.0, 40.0]
    assert metrics.average_latency_ms == pytest.approx(30.0)


def test_invalid_window_size():
    with pytest.raises(ValueError):
        MetricsAggregator(window_size=0)


def test_nearest_rank_percentiles():
    """p95/p99 index floor(N * q) into the sorted window"""
    metrics = MetricsAggregator()

    values = list(range(1, 101))
    random.Random(7).shuffle(values)
    for value in values:
        metrics.record(value, success=True)

    assert metrics.average_latency_ms == pytest.approx(50.5)
    assert metrics.p95_latency_ms == 96.0
    assert metrics.p99_latency_ms == 100.0


def test_single_sample_percentiles_clamp_to_window():
    metrics = MetricsAggregator()
    metrics.record(42, success=True)

    assert metrics.p95_latency_ms == 42.0
    assert metrics.p99_latency_ms == 42.0


def test_uniform_slow_window():
    """Twenty 5000ms samples put both percentiles at 5000"""
    metrics = MetricsAggregator()

    for _ in range(20):
        metrics.record(5000, success=True)

    assert metrics.p95_latency_ms == 5000.0
    assert metrics.p99_latency_ms == 5000.0


def test_last_error_tracking():
    metrics = MetricsAggregator()

    metrics.record(100, success=False)
    assert metrics.last_error is None

    metrics.record(100, success=False, error="upstream timeout")
    assert metrics.last_error == "upstream timeout"
    assert metrics.last_error_time is not None

    # Successful outcomes do not overwrite the last error
    metrics.record(100, success=True, error="ignored")
    assert metrics.last_error == "upstream timeout"


def test_feedback_counts():
    metrics = MetricsAggregator()

    metrics.record_feedback("positive")
    metrics.record_feedback(Sentiment.NEGATIVE)
    metrics.record_feedback("neutral")
    metrics.record_feedback("negative")

    assert metrics.user_feedback == {"positive": 1, "negative": 2, "neutral": 1}
    assert metrics.feedback_total == 4
    assert metrics.negative_feedback_share() == pytest.approx(0.5)


def test_unknown_feedback_rejected():
    metrics = MetricsAggregator()

    with pytest.raises(ValueError):
        metrics.record_feedback("ecstatic")

    assert metrics.feedback_total == 0


def test_snapshot_is_detached():
    metrics = MetricsAggregator()
    metrics.record(200, success=True)

    snapshot = metrics.snapshot()
    metrics.record(400, success=False)

    assert isinstance(snapshot, RolloutMetrics)
    assert snapshot.requests == 1
    assert snapshot.errors == 0

    data = metrics.to_dict()
    assert data["requests"] == 2
    assert data["errors"] == 1
    assert data["success_rate_percent"] == pytest.approx(50.0)


def test_sorted_window_tracks_evictions():
    """Percentiles and mean match a full sort of the window after every record"""
    rng = random.Random(11)
    metrics = MetricsAggregator(window_size=50)

    for _ in range(600):
        # Coarse values so duplicates are evicted as well
        metrics.record(rng.randint(1, 40) * 25, success=True)

        window = sorted(metrics.latencies)
        assert len(window) == min(metrics.requests, 50)
        assert metrics.p95_latency_ms == window[min(int(len(window) * 0.95), len(window) - 1)]
        assert metrics.p99_latency_ms == window[min(int(len(window) * 0.99), len(window) - 1)]
        assert metrics.average_latency_ms == pytest.approx(sum(window) / len(window))
