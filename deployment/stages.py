"""
Rollout Stages

Stage definitions for progressive feature rollout and the progression
rules that decide when a stage's exit criteria are satisfied.
"""
from typing import Dict, List, Optional, Any
from dataclasses import dataclass, field
from enum import Enum
from datetime import datetime

from logger import get_logger

logger = get_logger(__name__)


class StageStatus(Enum):
    """Status of a single rollout stage"""
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    ROLLED_BACK = "rolled-back"


class RolloutStatus(Enum):
    """Status of a feature rollout as a whole"""
    PLANNED = "planned"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"
    ROLLED_BACK = "rolled-back"


@dataclass
class StageCriteria:
    """
    Exit criteria for a stage

    Every criterion left as None is treated as satisfied.
    """
    min_duration_hours: Optional[float] = None
    max_errors: Optional[int] = None
    max_latency_p95_ms: Optional[float] = None
    min_success_rate_percent: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "min_duration_hours": self.min_duration_hours,
            "max_errors": self.max_errors,
            "max_latency_p95_ms": self.max_latency_p95_ms,
            "min_success_rate_percent": self.min_success_rate_percent,
        }


@dataclass
class RolloutStage:
    """One step of a progressive release"""
    name: str
    target_percentage: int
    criteria: StageCriteria = field(default_factory=StageCriteria)
    status: StageStatus = StageStatus.PENDING
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None

    # Set once a stalled-stage warning has been raised for this stage
    stall_alerted: bool = False

    def __post_init__(self):
        if not 0 <= self.target_percentage <= 100:
            raise ValueError(
                f"Stage {self.name!r}: target_percentage must be within 0-100, "
                f"got {self.target_percentage}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "target_percentage": self.target_percentage,
            "criteria": self.criteria.to_dict(),
            "status": self.status.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
        }


def default_stages() -> List[RolloutStage]:
    """
    Default four-stage template

    Canary (1%) -> Early Adopters (5%) -> Beta (25%) -> General Availability (100%)

    A fresh list is built on every call so rollouts never share stage objects.
    """
    return [
        RolloutStage(
            "Canary", 1,
            StageCriteria(
                min_duration_hours=24,
                max_errors=10,
                max_latency_p95_ms=500,
                min_success_rate_percent=99
            )
        ),
        RolloutStage(
            "Early Adopters", 5,
            StageCriteria(
                min_duration_hours=48,
                max_errors=50,
                max_latency_p95_ms=750,
                min_success_rate_percent=98
            )
        ),
        RolloutStage(
            "Beta", 25,
            StageCriteria(
                min_duration_hours=72,
                max_errors=100,
                max_latency_p95_ms=1000,
                min_success_rate_percent=97
            )
        ),
        RolloutStage(
            "General Availability", 100,
            StageCriteria(min_success_rate_percent=95)
        ),
    ]


class StageProgressionEngine:
    """
    Decides whether a stage's exit criteria are satisfied

    All configured criteria must pass (logical AND). The engine holds no
    state; ``metrics`` is anything exposing ``errors``,
    ``p95_latency_ms`` and ``success_rate_percent``.

    Example:
        engine = StageProgressionEngine()
        if engine.can_advance(stage, rollout.metrics, now):
            registry.progress(rollout.feature_name)
    """

    @staticmethod
    def failed_criteria(stage: RolloutStage, metrics, now: datetime) -> List[str]:
        """Names of the criteria the stage currently fails"""
        criteria = stage.criteria
        failed = []

        if criteria.min_duration_hours is not None and stage.started_at is not None:
            hours_elapsed = (now - stage.started_at).total_seconds() / 3600
            if hours_elapsed < criteria.min_duration_hours:
                failed.append("min_duration_hours")

        if criteria.max_errors is not None and metrics.errors > criteria.max_errors:
            failed.append("max_errors")

        if (
            criteria.max_latency_p95_ms is not None
            and metrics.p95_latency_ms > criteria.max_latency_p95_ms
        ):
            failed.append("max_latency_p95_ms")

        if (
            criteria.min_success_rate_percent is not None
            and metrics.success_rate_percent < criteria.min_success_rate_percent
        ):
            failed.append("min_success_rate_percent")

        return failed

    @classmethod
    def can_advance(cls, stage: RolloutStage, metrics, now: datetime) -> bool:
        return not cls.failed_criteria(stage, metrics, now)


def can_advance(stage: RolloutStage, metrics, now: datetime) -> bool:
    """Module-level shortcut for StageProgressionEngine.can_advance"""
    return StageProgressionEngine.can_advance(stage, metrics, now)
