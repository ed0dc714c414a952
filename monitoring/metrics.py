"""
Rollout Metrics Aggregation

Bounded per-feature sample store for staged rollouts. Tracks request and
error counters, a sliding window of recent latencies for percentile
estimates, and user feedback counts.
"""
from typing import Dict, List, Optional, Any
from dataclasses import dataclass, field
from enum import Enum
from datetime import datetime
from collections import deque

from sortedcontainers import SortedList

from clock import utcnow
from logger import get_logger

logger = get_logger(__name__)

DEFAULT_WINDOW_SIZE = 10000


class Sentiment(Enum):
    """User feedback sentiment"""
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


@dataclass
class RolloutMetrics:
    """Point-in-time copy of a feature's rollout metrics"""
    requests: int = 0
    errors: int = 0
    success_rate_percent: float = 100.0
    error_rate: float = 0.0
    average_latency_ms: float = 0.0
    p95_latency_ms: float = 0.0
    p99_latency_ms: float = 0.0
    window_size: int = 0
    user_feedback: Dict[str, int] = field(default_factory=dict)
    last_error: Optional[str] = None
    last_error_time: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "requests": self.requests,
            "errors": self.errors,
            "success_rate_percent": self.success_rate_percent,
            "error_rate": self.error_rate,
            "average_latency_ms": self.average_latency_ms,
            "p95_latency_ms": self.p95_latency_ms,
            "p99_latency_ms": self.p99_latency_ms,
            "window_size": self.window_size,
            "user_feedback": dict(self.user_feedback),
            "last_error": self.last_error,
            "last_error_time": self.last_error_time.isoformat() if self.last_error_time else None,
        }


class MetricsAggregator:
    """
    Metrics for a single feature rollout

    Counters grow monotonically for the lifetime of the rollout while
    latency statistics are computed over the most recent
    ``window_size`` samples only (oldest evicted first).

    Not thread-safe on its own: the owning rollout serializes access
    with its lock.

    Example:
        metrics = MetricsAggregator()
        metrics.record(120.0, success=True)
        metrics.record(900.0, success=False, error="upstream timeout")

        print(metrics.success_rate_percent)  # 50.0
        print(metrics.p95_latency_ms)        # 900.0
    """

    def __init__(self, window_size: int = DEFAULT_WINDOW_SIZE):
        if window_size <= 0:
            raise ValueError(f"window_size must be positive, got {window_size}")

        self.requests = 0
        self.errors = 0

        self.average_latency_ms = 0.0
        self.p95_latency_ms = 0.0
        self.p99_latency_ms = 0.0

        self.user_feedback: Dict[str, int] = {s.value: 0 for s in Sentiment}

        self.last_error: Optional[str] = None
        self.last_error_time: Optional[datetime] = None

        # Arrival order for eviction, sorted view for percentiles
        self._latencies: deque = deque(maxlen=window_size)
        self._sorted_latencies = SortedList()
        self._latency_sum = 0.0

    @property
    def window_size(self) -> int:
        """Number of latency samples currently retained"""
        return len(self._latencies)

    @property
    def window_capacity(self) -> int:
        return self._latencies.maxlen

    @property
    def latencies(self) -> List[float]:
        """Copy of the latency window, oldest first"""
        return list(self._latencies)

    @property
    def success_rate_percent(self) -> float:
        if self.requests == 0:
            return 100.0
        return (self.requests - self.errors) / self.requests * 100

    @property
    def error_rate(self) -> float:
        if self.requests == 0:
            return 0.0
        return self.errors / self.requests

    @property
    def feedback_total(self) -> int:
        return sum(self.user_feedback.values())

    def record(
        self,
        latency_ms: float,
        success: bool,
        error: Optional[str] = None,
        timestamp: Optional[datetime] = None
    ):
        """
        Record one completed operation

        Args:
            latency_ms: Observed latency in milliseconds
            success: Whether the operation succeeded
            error: Optional error description for failed operations
            timestamp: When the failure happened (used for last_error_time)
        """
        self.requests += 1
        if not success:
            self.errors += 1
            if error:
                self.last_error = error
                self.last_error_time = timestamp or utcnow()

        value = float(latency_ms)

        if len(self._latencies) == self._latencies.maxlen:
            evicted = self._latencies[0]
            self._sorted_latencies.remove(evicted)
            self._latency_sum -= evicted

        # deque(maxlen=...) drops the oldest sample on overflow
        self._latencies.append(value)
        self._sorted_latencies.add(value)
        self._latency_sum += value

        self._recompute_latency()

    def record_feedback(self, sentiment) -> Sentiment:
        """Increment the counter for a feedback sentiment"""
        sentiment = Sentiment(sentiment)
        self.user_feedback[sentiment.value] += 1
        return sentiment

    def negative_feedback_share(self) -> float:
        total = self.feedback_total
        if total == 0:
            return 0.0
        return self.user_feedback[Sentiment.NEGATIVE.value] / total

    def _recompute_latency(self):
        count = len(self._sorted_latencies)
        if count == 0:
            return

        self.average_latency_ms = self._latency_sum / count
        self.p95_latency_ms = self._percentile(self._sorted_latencies, 0.95)
        self.p99_latency_ms = self._percentile(self._sorted_latencies, 0.99)

    @staticmethod
    def _percentile(sorted_data, percentile: float) -> float:
        """Nearest-rank percentile from a sorted sequence (list or SortedList)"""
        if not sorted_data:
            return 0.0

        index = int(len(sorted_data) * percentile)
        return sorted_data[min(max(index, 0), len(sorted_data) - 1)]

    def snapshot(self) -> RolloutMetrics:
        return RolloutMetrics(
            requests=self.requests,
            errors=self.errors,
            success_rate_percent=self.success_rate_percent,
            error_rate=self.error_rate,
            average_latency_ms=self.average_latency_ms,
            p95_latency_ms=self.p95_latency_ms,
            p99_latency_ms=self.p99_latency_ms,
            window_size=self.window_size,
            user_feedback=dict(self.user_feedback),
            last_error=self.last_error,
            last_error_time=self.last_error_time,
        )

    def to_dict(self) -> Dict[str, Any]:
        return self.snapshot().to_dict()
