"""
Monitoring Module

Provides rollout metrics aggregation, threshold alerting and the event
bus used to publish rollout and alert events.

Quick Start:
    from monitoring import MetricsAggregator, AlertManager, EventBus

    bus = EventBus()
    bus.subscribe(lambda event: print(event.name, event.payload))

    alerts = AlertManager(bus)
    metrics = MetricsAggregator()
    metrics.record(150.0, success=True)
"""

from .metrics import (
    MetricsAggregator,
    RolloutMetrics,
    Sentiment
)

from .alerts import (
    AlertManager,
    Alert,
    AlertSeverity,
    AlertThresholds
)

from .events import (
    EventBus,
    RolloutEvent,
    ROLLOUT_CREATED,
    ROLLOUT_PROGRESSED,
    ROLLOUT_ROLLBACK,
    ALERT_CREATED,
    ALERT_RESOLVED
)

__all__ = [
    # Metrics
    "MetricsAggregator",
    "RolloutMetrics",
    "Sentiment",

    # Alerts
    "AlertManager",
    "Alert",
    "AlertSeverity",
    "AlertThresholds",

    # Events
    "EventBus",
    "RolloutEvent",
    "ROLLOUT_CREATED",
    "ROLLOUT_PROGRESSED",
    "ROLLOUT_ROLLBACK",
    "ALERT_CREATED",
    "ALERT_RESOLVED",
]
