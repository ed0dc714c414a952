"""
Rollout Alerting

Compares live rollout metrics against global thresholds, records alerts
in a bounded in-memory log and publishes them to event subscribers.
"""
from typing import Dict, List, Optional, Any
from dataclasses import dataclass
from enum import Enum
from datetime import datetime
from collections import deque
import itertools
import threading

from clock import Clock, utcnow
from config import settings
from logger import get_logger
from monitoring.events import EventBus, ALERT_CREATED, ALERT_RESOLVED
import metrics as prometheus_metrics

logger = get_logger(__name__)

HIGH_ERROR_RATE = "High error rate"
LOW_SUCCESS_RATE = "Low success rate"


class AlertSeverity(Enum):
    """Alert severity levels"""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


@dataclass
class Alert:
    """Record of a threshold breach"""
    id: str
    severity: AlertSeverity
    feature: str
    message: str
    metric: str
    value: float
    threshold: float
    timestamp: datetime
    resolved: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "severity": self.severity.value,
            "feature": self.feature,
            "message": self.message,
            "metric": self.metric,
            "value": self.value,
            "threshold": self.threshold,
            "timestamp": self.timestamp.isoformat(),
            "resolved": self.resolved,
        }


@dataclass
class AlertThresholds:
    """Global alert thresholds applied to every rollout"""
    error_rate: float = 0.05
    latency_p95_ms: float = 1000.0
    latency_p99_ms: float = 2000.0
    success_rate_percent: float = 95.0
    feedback_min_samples: int = 10
    feedback_negative_share: float = 0.3

    @classmethod
    def from_settings(cls, source=None) -> "AlertThresholds":
        source = source or settings
        return cls(
            error_rate=source.alert_error_rate_threshold,
            latency_p95_ms=source.alert_latency_p95_ms,
            latency_p99_ms=source.alert_latency_p99_ms,
            success_rate_percent=source.alert_success_rate_percent,
            feedback_min_samples=source.feedback_min_samples,
            feedback_negative_share=source.feedback_negative_threshold,
        )


class AlertManager:
    """
    Threshold monitoring for feature rollouts

    Checks run in a fixed order on every evaluation:
    1. error rate above threshold -> error alert (auto-rollback candidate)
    2. p95 latency above threshold -> warning alert
    3. p99 latency above threshold -> error alert
    4. success rate below threshold -> error alert (auto-rollback candidate)

    Alerts are not de-duplicated: a breach that persists raises a new
    alert on every evaluation. The log keeps the newest ``max_alerts``
    entries.

    Example:
        alerts = AlertManager(EventBus())
        reason = alerts.evaluate(rollout_state)
        if reason:
            rollback_controller.rollback(rollout_state, reason)

        for alert in alerts.active_alerts():
            print(alert.message)
    """

    def __init__(
        self,
        event_bus: EventBus,
        thresholds: Optional[AlertThresholds] = None,
        max_alerts: Optional[int] = None,
        clock: Clock = utcnow
    ):
        self.event_bus = event_bus
        self.thresholds = thresholds or AlertThresholds.from_settings()
        self.clock = clock

        self._alerts: deque = deque(maxlen=max_alerts or settings.max_alerts)
        self._sequence = itertools.count(1)
        self._lock = threading.RLock()

    def raise_alert(
        self,
        severity: AlertSeverity,
        feature: str,
        message: str,
        metric: str,
        value: float,
        threshold: float
    ) -> Alert:
        """Create, store, log and publish an alert"""
        now = self.clock()

        with self._lock:
            alert = Alert(
                id=f"{feature}-{metric}-{int(now.timestamp() * 1000)}-{next(self._sequence)}",
                severity=severity,
                feature=feature,
                message=message,
                metric=metric,
                value=value,
                threshold=threshold,
                timestamp=now,
            )
            self._alerts.append(alert)

        log_line = f"[Alert] {message} - {feature}: {metric}={value} (threshold {threshold})"
        if severity in (AlertSeverity.CRITICAL, AlertSeverity.ERROR):
            logger.error(log_line)
        else:
            logger.warning(log_line)

        prometheus_metrics.record_alert(feature, severity.value)
        self.event_bus.publish(ALERT_CREATED, alert.to_dict())

        return alert

    def evaluate(self, state) -> Optional[str]:
        """
        Check a rollout's metrics against the global thresholds

        Args:
            state: RolloutState to inspect

        Returns:
            The auto-rollback reason when the rollout's policy allows
            auto-rollback and a rollback-worthy breach was found,
            otherwise None
        """
        feature = state.feature_name
        metrics = state.metrics
        rollback_reason = None

        error_rate = metrics.error_rate
        if error_rate > self.thresholds.error_rate:
            self.raise_alert(
                AlertSeverity.ERROR,
                feature,
                "High error rate detected",
                "errorRate",
                error_rate,
                self.thresholds.error_rate
            )
            if state.policy.auto_rollback:
                rollback_reason = HIGH_ERROR_RATE

        if metrics.p95_latency_ms > self.thresholds.latency_p95_ms:
            self.raise_alert(
                AlertSeverity.WARNING,
                feature,
                "High P95 latency detected",
                "latencyP95",
                metrics.p95_latency_ms,
                self.thresholds.latency_p95_ms
            )

        if metrics.p99_latency_ms > self.thresholds.latency_p99_ms:
            self.raise_alert(
                AlertSeverity.ERROR,
                feature,
                "High P99 latency detected",
                "latencyP99",
                metrics.p99_latency_ms,
                self.thresholds.latency_p99_ms
            )

        success_rate = metrics.success_rate_percent
        if success_rate < self.thresholds.success_rate_percent:
            self.raise_alert(
                AlertSeverity.ERROR,
                feature,
                "Low success rate detected",
                "successRate",
                success_rate,
                self.thresholds.success_rate_percent
            )
            if state.policy.auto_rollback and rollback_reason is None:
                rollback_reason = LOW_SUCCESS_RATE

        return rollback_reason

    def evaluate_feedback(self, state) -> Optional[Alert]:
        """Warn when negative feedback share is too high"""
        metrics = state.metrics

        if metrics.feedback_total < self.thresholds.feedback_min_samples:
            return None

        share = metrics.negative_feedback_share()
        if share <= self.thresholds.feedback_negative_share:
            return None

        return self.raise_alert(
            AlertSeverity.WARNING,
            state.feature_name,
            "High negative user feedback",
            "feedback",
            share,
            self.thresholds.feedback_negative_share
        )

    def resolve(self, alert_id: str) -> bool:
        """
        Mark an alert resolved

        Returns False (and publishes nothing) when the alert is unknown
        or already resolved.
        """
        with self._lock:
            alert = self.get(alert_id)
            if alert is None:
                logger.warning(f"Alert not found: {alert_id}")
                return False
            if alert.resolved:
                logger.debug(f"Alert already resolved: {alert_id}")
                return False
            alert.resolved = True

        logger.info(f"Resolved alert {alert_id}")
        self.event_bus.publish(ALERT_RESOLVED, alert.to_dict())
        return True

    def get(self, alert_id: str) -> Optional[Alert]:
        with self._lock:
            for alert in self._alerts:
                if alert.id == alert_id:
                    return alert
        return None

    def active_alerts(self, feature: Optional[str] = None) -> List[Alert]:
        with self._lock:
            return [
                alert for alert in self._alerts
                if not alert.resolved and (feature is None or alert.feature == feature)
            ]

    def all_alerts(self, feature: Optional[str] = None) -> List[Alert]:
        with self._lock:
            return [
                alert for alert in self._alerts
                if feature is None or alert.feature == feature
            ]

    def get_alert_stats(self) -> Dict[str, Any]:
        with self._lock:
            by_severity: Dict[str, int] = {}
            for alert in self._alerts:
                key = alert.severity.value
                by_severity[key] = by_severity.get(key, 0) + 1

            return {
                "total_alerts": len(self._alerts),
                "active_alerts": sum(1 for a in self._alerts if not a.resolved),
                "by_severity": by_severity,
                "capacity": self._alerts.maxlen,
            }
