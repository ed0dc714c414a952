"""
metrics.py - Prometheus metrics for the rollout controller
"""
from prometheus_client import Counter, Histogram, Gauge, generate_latest
from functools import wraps
import time

from config import settings

# Metrics definitions
outcomes_total = Counter(
    'rollout_outcomes_total',
    'Outcomes recorded for rolled-out features',
    ['feature', 'result']
)

feedback_total = Counter(
    'rollout_feedback_total',
    'User feedback recorded for rolled-out features',
    ['feature', 'sentiment']
)

alerts_total = Counter(
    'rollout_alerts_total',
    'Alerts raised by the rollout monitor',
    ['feature', 'severity']
)

rollbacks_total = Counter(
    'rollout_rollbacks_total',
    'Rollbacks performed',
    ['feature']
)

stage_percentage = Gauge(
    'rollout_stage_percentage',
    'Target traffic percentage of the active stage (0 after rollback)',
    ['feature']
)

scheduler_tick_duration = Histogram(
    'rollout_scheduler_tick_duration_seconds',
    'Duration of a scheduler health/progression tick'
)

def record_outcome(feature: str, success: bool):
    if settings.enable_metrics:
        outcomes_total.labels(feature, "success" if success else "failure").inc()

def record_feedback(feature: str, sentiment: str):
    if settings.enable_metrics:
        feedback_total.labels(feature, sentiment).inc()

def record_alert(feature: str, severity: str):
    if settings.enable_metrics:
        alerts_total.labels(feature, severity).inc()

def record_rollback(feature: str):
    if settings.enable_metrics:
        rollbacks_total.labels(feature).inc()
        stage_percentage.labels(feature).set(0)

def set_stage_percentage(feature: str, percentage: float):
    if settings.enable_metrics:
        stage_percentage.labels(feature).set(percentage)

def track_tick(func):
    """Decorator to time scheduler ticks"""
    @wraps(func)
    def wrapper(*args, **kwargs):
        start = time.time()
        try:
            return func(*args, **kwargs)
        finally:
            if settings.enable_metrics:
                scheduler_tick_duration.observe(time.time() - start)
    return wrapper

def get_metrics():
    """Get Prometheus metrics"""
    return generate_latest()
