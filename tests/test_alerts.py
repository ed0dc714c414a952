"""
Test threshold alerting and the alert log
"""
import pytest

from clock import ManualClock
from deployment.rollout import RolloutPolicy, RolloutState
from deployment.stages import default_stages
from monitoring.alerts import (
    AlertManager,
    AlertSeverity,
    AlertThresholds,
    HIGH_ERROR_RATE,
    LOW_SUCCESS_RATE
)
from monitoring.events import EventBus


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def published(bus):
    received = []
    bus.subscribe(received.append)
    return received


@pytest.fixture
def manager(bus):
    return AlertManager(bus, thresholds=AlertThresholds(), max_alerts=100, clock=ManualClock())


def make_state(auto_rollback=True):
    return RolloutState(
        feature_name="newSearch",
        stages=default_stages(),
        policy=RolloutPolicy(auto_rollback=auto_rollback)
    )


def test_healthy_rollout_raises_nothing(manager, published):
    state = make_state()
    for _ in range(50):
        state.metrics.record(100, success=True)

    assert manager.evaluate(state) is None
    assert manager.all_alerts() == []
    assert published == []


def test_error_rate_breach_is_first_reason(manager, published):
    state = make_state()
    state.metrics.record(100, success=True)
    state.metrics.record(100, success=False)

    reason = manager.evaluate(state)

    assert reason == HIGH_ERROR_RATE
    alerts = manager.active_alerts("newSearch")
    assert [(a.metric, a.severity) for a in alerts] == [
        ("errorRate", AlertSeverity.ERROR),
        ("successRate", AlertSeverity.ERROR),
    ]
    assert alerts[0].value == pytest.approx(0.5)
    assert alerts[0].threshold == 0.05
    assert [e.name for e in published] == ["alert:created", "alert:created"]


def test_low_success_rate_alone():
    """A lenient error threshold leaves only the success-rate breach"""
    manager = AlertManager(
        EventBus(),
        thresholds=AlertThresholds(error_rate=0.5, success_rate_percent=95.0),
        clock=ManualClock()
    )
    state = make_state()
    for _ in range(9):
        state.metrics.record(100, success=True)
    state.metrics.record(100, success=False)

    assert manager.evaluate(state) == LOW_SUCCESS_RATE
    assert [a.metric for a in manager.all_alerts()] == ["successRate"]


def test_no_reason_without_auto_rollback(manager):
    state = make_state(auto_rollback=False)
    state.metrics.record(100, success=False)

    assert manager.evaluate(state) is None
    assert len(manager.active_alerts()) == 2


def test_latency_breaches_never_return_reason(manager):
    state = make_state()
    for _ in range(20):
        state.metrics.record(2500, success=True)

    assert manager.evaluate(state) is None
    alerts = {a.metric: a for a in manager.all_alerts()}
    assert alerts["latencyP95"].severity == AlertSeverity.WARNING
    assert alerts["latencyP95"].threshold == 1000.0
    assert alerts["latencyP99"].severity == AlertSeverity.ERROR
    assert alerts["latencyP99"].value == 2500.0


def test_persisting_breach_alerts_every_evaluation(manager):
    state = make_state(auto_rollback=False)
    state.metrics.record(100, success=False)

    manager.evaluate(state)
    manager.evaluate(state)

    assert len(manager.all_alerts()) == 4
    assert len({a.id for a in manager.all_alerts()}) == 4


def test_feedback_alert_needs_minimum_samples(manager):
    state = make_state()
    for _ in range(9):
        state.metrics.record_feedback("negative")

    assert manager.evaluate_feedback(state) is None

    state.metrics.record_feedback("negative")
    alert = manager.evaluate_feedback(state)

    assert alert.severity == AlertSeverity.WARNING
    assert alert.metric == "feedback"
    assert alert.value == 1.0


def test_resolve_publishes_once(manager, published):
    alert = manager.raise_alert(
        AlertSeverity.WARNING, "newSearch", "High P95 latency detected",
        "latencyP95", 1200, 1000
    )

    assert manager.resolve(alert.id) is True
    assert manager.resolve(alert.id) is False
    assert manager.resolve("does-not-exist") is False

    assert [e.name for e in published] == ["alert:created", "alert:resolved"]
    assert published[1].payload["resolved"] is True
    assert manager.active_alerts() == []
    assert manager.get(alert.id).resolved is True


def test_alert_log_is_bounded(bus):
    manager = AlertManager(bus, max_alerts=3, clock=ManualClock())

    raised = [
        manager.raise_alert(AlertSeverity.INFO, f"f{i}", "note", "errorRate", i, 0)
        for i in range(5)
    ]

    kept = manager.all_alerts()
    assert [a.id for a in kept] == [a.id for a in raised[2:]]
    assert manager.get(raised[0].id) is None


def test_alert_filter_and_stats(manager):
    manager.raise_alert(AlertSeverity.ERROR, "a", "x", "errorRate", 1, 0)
    manager.raise_alert(AlertSeverity.WARNING, "b", "y", "latencyP95", 1, 0)
    critical = manager.raise_alert(AlertSeverity.CRITICAL, "a", "z", "rollback", 1, 0)
    manager.resolve(critical.id)

    assert [a.metric for a in manager.active_alerts("a")] == ["errorRate"]
    assert len(manager.all_alerts("a")) == 2

    stats = manager.get_alert_stats()
    assert stats["total_alerts"] == 3
    assert stats["active_alerts"] == 2
    assert stats["by_severity"] == {"error": 1, "warning": 1, "critical": 1}
    assert stats["capacity"] == 100


def test_thresholds_from_settings():
    thresholds = AlertThresholds.from_settings()

    assert thresholds.error_rate == 0.05
    assert thresholds.latency_p95_ms == 1000.0
    assert thresholds.latency_p99_ms == 2000.0
    assert thresholds.success_rate_percent == 95.0
    assert thresholds.feedback_min_samples == 10
    assert thresholds.feedback_negative_share == 0.3
