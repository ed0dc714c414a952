"""
Staged Rollout Registry

Owns every feature rollout and is the only entry point for lifecycle
transitions: create, progress, record outcomes and feedback, rollback.
"""
from typing import Dict, List, Optional, Any
from dataclasses import dataclass, field
from datetime import datetime
import copy
import threading

from clock import Clock, utcnow
from config import settings
from logger import get_logger
from monitoring.alerts import AlertManager, Alert
from monitoring.events import EventBus, ROLLOUT_CREATED, ROLLOUT_PROGRESSED
from monitoring.metrics import MetricsAggregator
from deployment.exceptions import RolloutAlreadyExistsError
from deployment.feature_flags import FlagAdapter
from deployment.rollback import RollbackController
from deployment.stages import (
    RolloutStage,
    RolloutStatus,
    StageProgressionEngine,
    StageStatus,
    default_stages
)
import metrics as prometheus_metrics

logger = get_logger(__name__)

TERMINAL_STATUSES = (
    RolloutStatus.COMPLETED,
    RolloutStatus.FAILED,
    RolloutStatus.ROLLED_BACK,
)


@dataclass
class RolloutPolicy:
    """Automation switches for a rollout"""
    auto_progress: bool = True
    auto_rollback: bool = True
    notify_on_progress: bool = True
    notify_on_rollback: bool = True

    def to_dict(self) -> Dict[str, bool]:
        return {
            "auto_progress": self.auto_progress,
            "auto_rollback": self.auto_rollback,
            "notify_on_progress": self.notify_on_progress,
            "notify_on_rollback": self.notify_on_rollback,
        }


@dataclass
class RolloutState:
    """
    Rollout of a single feature

    ``current_stage_index`` is -1 until the first stage is activated.
    Mutations go through RolloutRegistry, which holds ``lock`` while
    changing counters or stage state.
    """
    feature_name: str
    stages: List[RolloutStage]
    description: str = ""
    current_stage_index: int = -1
    metrics: MetricsAggregator = field(default_factory=MetricsAggregator)
    policy: RolloutPolicy = field(default_factory=RolloutPolicy)
    status: RolloutStatus = RolloutStatus.PLANNED
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    lock: Any = field(default_factory=threading.RLock, repr=False, compare=False)

    @property
    def current_stage(self) -> Optional[RolloutStage]:
        if self.current_stage_index < 0:
            return None
        return self.stages[self.current_stage_index]

    @property
    def is_final_stage(self) -> bool:
        return self.current_stage_index >= len(self.stages) - 1

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        with self.lock:
            current = self.current_stage
            return {
                "feature_name": self.feature_name,
                "description": self.description,
                "status": self.status.value,
                "current_stage_index": self.current_stage_index,
                "current_stage": current.name if current else None,
                "current_percentage": current.target_percentage if current else 0,
                "stages": [stage.to_dict() for stage in self.stages],
                "metrics": self.metrics.to_dict(),
                "policy": self.policy.to_dict(),
                "created_at": self.created_at.isoformat(),
                "updated_at": self.updated_at.isoformat(),
            }


class RolloutRegistry:
    """
    Registry of feature rollouts

    Unknown features are not errors: progress/rollback return False and
    recording calls are no-ops. Only a duplicate ``create`` raises.

    Example:
        registry = RolloutRegistry(flags, bus, alert_manager, rollback_controller)

        registry.create("newSearch", "Vector search backend")
        registry.progress("newSearch")          # Canary, 1%

        # Hot path: record every completed operation
        registry.record_outcome("newSearch", success=True, latency_ms=87.0)

        registry.get("newSearch").current_stage.name  # "Canary"
    """

    def __init__(
        self,
        flag_adapter: FlagAdapter,
        event_bus: EventBus,
        alert_manager: AlertManager,
        rollback_controller: RollbackController,
        clock: Clock = utcnow,
        window_size: Optional[int] = None
    ):
        self.flag_adapter = flag_adapter
        self.event_bus = event_bus
        self.alert_manager = alert_manager
        self.rollback_controller = rollback_controller
        self.clock = clock
        self.window_size = window_size or settings.latency_window_size

        self._rollouts: Dict[str, RolloutState] = {}
        self._lock = threading.Lock()

    def create(
        self,
        feature_name: str,
        description: str = "",
        stages: Optional[List[RolloutStage]] = None,
        policy: Optional[RolloutPolicy] = None
    ) -> RolloutState:
        """
        Register a rollout plan

        Args:
            feature_name: Unique feature key
            description: Free-form description
            stages: Ordered stages (default: Canary/Early Adopters/Beta/GA)
            policy: Automation policy (default: everything on)

        Returns:
            The new RolloutState

        Raises:
            RolloutAlreadyExistsError: A rollout for this feature exists
            ValueError: Empty feature name or empty stage list
        """
        if not feature_name:
            raise ValueError("feature_name is required")

        if stages is None:
            stages = default_stages()
        else:
            # Callers keep ownership of the objects they passed in
            stages = copy.deepcopy(list(stages))

        if not stages:
            raise ValueError(f"Rollout {feature_name} needs at least one stage")

        now = self.clock()
        state = RolloutState(
            feature_name=feature_name,
            description=description,
            stages=stages,
            metrics=MetricsAggregator(window_size=self.window_size),
            policy=policy or RolloutPolicy(),
            created_at=now,
            updated_at=now
        )

        with self._lock:
            if feature_name in self._rollouts:
                raise RolloutAlreadyExistsError(feature_name)
            self._rollouts[feature_name] = state

        logger.info(
            f"Created rollout plan for {feature_name} "
            f"({len(stages)} stages: {', '.join(s.name for s in stages)})"
        )

        self.event_bus.publish(ROLLOUT_CREATED, state.to_dict())

        return state

    def replace_stages(self, feature_name: str, stages: List[RolloutStage]) -> bool:
        """Swap the stage plan of a rollout that has not started yet"""
        state = self.get(feature_name)
        if state is None:
            logger.warning(f"Rollout not found: {feature_name}")
            return False

        if not stages:
            raise ValueError(f"Rollout {feature_name} needs at least one stage")

        with state.lock:
            if state.status != RolloutStatus.PLANNED:
                logger.warning(
                    f"Cannot replace stages of {feature_name} in status {state.status.value}"
                )
                return False

            state.stages = copy.deepcopy(list(stages))
            state.updated_at = self.clock()

        logger.info(f"Replaced stage plan for {feature_name} ({len(stages)} stages)")
        return True

    def remove(self, feature_name: str) -> bool:
        """Forget a rollout so the feature can be planned again"""
        with self._lock:
            state = self._rollouts.pop(feature_name, None)

        if state is None:
            logger.warning(f"Rollout not found for removal: {feature_name}")
            return False

        logger.info(f"Removed rollout {feature_name} (status: {state.status.value})")
        return True

    def progress(self, feature_name: str) -> bool:
        """
        Start a rollout or advance it to its next stage

        The first stage activates unconditionally; later transitions need
        the active stage's exit criteria to hold.

        Returns:
            True if a new stage was activated
        """
        state = self.get(feature_name)
        if state is None:
            logger.warning(f"Rollout not found: {feature_name}")
            return False

        with state.lock:
            if state.is_terminal:
                logger.info(
                    f"Rollout {feature_name} is {state.status.value}, not progressing"
                )
                return False

            if state.is_final_stage:
                logger.debug(f"Rollout already at final stage for {feature_name}")
                return False

            now = self.clock()
            current = state.current_stage

            if current is not None:
                failed = StageProgressionEngine.failed_criteria(current, state.metrics, now)
                if failed:
                    logger.info(
                        f"Stage criteria not met for {feature_name}:{current.name} "
                        f"({', '.join(failed)})"
                    )
                    return False

                current.status = StageStatus.COMPLETED
                current.ended_at = now

            state.current_stage_index += 1
            new_stage = state.current_stage
            new_stage.status = StageStatus.ACTIVE
            new_stage.started_at = now

            state.status = RolloutStatus.IN_PROGRESS
            state.updated_at = now

            self._apply_percentage(feature_name, new_stage.target_percentage)

            logger.info(
                f"Progressed rollout for {feature_name} to {new_stage.name} "
                f"({new_stage.target_percentage}%)"
            )

            if state.policy.notify_on_progress:
                self.event_bus.publish(ROLLOUT_PROGRESSED, {
                    "feature": feature_name,
                    "stage": new_stage.name,
                    "stage_index": state.current_stage_index,
                    "percentage": new_stage.target_percentage,
                })

        return True

    def complete(self, feature_name: str) -> bool:
        """
        Close out a rollout whose final stage met its criteria

        Returns:
            True if the rollout moved to ``completed``
        """
        state = self.get(feature_name)
        if state is None:
            logger.warning(f"Rollout not found: {feature_name}")
            return False

        with state.lock:
            if state.status != RolloutStatus.IN_PROGRESS or not state.is_final_stage:
                return False

            now = self.clock()
            stage = state.current_stage
            if not StageProgressionEngine.can_advance(stage, state.metrics, now):
                return False

            stage.status = StageStatus.COMPLETED
            stage.ended_at = now
            state.status = RolloutStatus.COMPLETED
            state.updated_at = now

        logger.info(f"Rollout completed for {feature_name} at {stage.target_percentage}%")
        return True

    def _apply_percentage(self, feature_name: str, percentage: float):
        try:
            self.flag_adapter.apply_percentage(feature_name, percentage)
        except Exception as e:
            logger.error(f"Flag adapter failed to apply {percentage}% for {feature_name}: {e}")

        prometheus_metrics.set_stage_percentage(feature_name, percentage)

    def record_outcome(
        self,
        feature_name: str,
        success: bool,
        latency_ms: float,
        error: Optional[str] = None
    ):
        """
        Record a completed operation and check thresholds immediately

        Unknown features are ignored. A rolled-back rollout keeps
        counting samples but is no longer evaluated. A completed rollout
        still raises alerts but is never rolled back automatically.
        """
        state = self.get(feature_name)
        if state is None:
            logger.warning(f"Outcome for unknown rollout ignored: {feature_name}")
            return

        with state.lock:
            now = self.clock()
            state.metrics.record(latency_ms, success, error=error, timestamp=now)
            state.updated_at = now

            prometheus_metrics.record_outcome(feature_name, success)

            self._evaluate_locked(state)

    def evaluate(self, feature_name: str) -> bool:
        """
        Run threshold checks for a rollout

        Returns:
            True if the evaluation rolled the feature back
        """
        state = self.get(feature_name)
        if state is None:
            return False

        with state.lock:
            return self._evaluate_locked(state)

    def _evaluate_locked(self, state: RolloutState) -> bool:
        if state.status == RolloutStatus.ROLLED_BACK:
            return False

        reason = self.alert_manager.evaluate(state)
        if reason is None:
            return False

        if state.status == RolloutStatus.COMPLETED:
            logger.warning(
                f"Completed rollout {state.feature_name} breached thresholds "
                f"({reason}); not rolling back automatically"
            )
            return False

        return self.rollback_controller.rollback(state, reason)

    def record_feedback(self, feature_name: str, sentiment) -> Optional[Alert]:
        """
        Record user feedback

        Args:
            feature_name: Feature the feedback is about
            sentiment: Sentiment or one of "positive", "negative", "neutral"

        Returns:
            The warning alert if negative feedback crossed the threshold

        Raises:
            ValueError: Unknown sentiment value
        """
        state = self.get(feature_name)
        if state is None:
            logger.warning(f"Feedback for unknown rollout ignored: {feature_name}")
            return None

        with state.lock:
            recorded = state.metrics.record_feedback(sentiment)
            state.updated_at = self.clock()

            prometheus_metrics.record_feedback(feature_name, recorded.value)

            return self.alert_manager.evaluate_feedback(state)

    def rollback(self, feature_name: str, reason: str) -> bool:
        """Roll back a feature (see RollbackController.rollback)"""
        state = self.get(feature_name)
        if state is None:
            return self.rollback_controller.rollback(None, reason)

        with state.lock:
            return self.rollback_controller.rollback(state, reason)

    def get(self, feature_name: str) -> Optional[RolloutState]:
        with self._lock:
            return self._rollouts.get(feature_name)

    def list_all(self) -> List[RolloutState]:
        with self._lock:
            return list(self._rollouts.values())

    def list_in_progress(self) -> List[RolloutState]:
        return [
            state for state in self.list_all()
            if state.status == RolloutStatus.IN_PROGRESS
        ]

    def metrics_summary(self) -> Dict[str, Dict[str, Any]]:
        summary = {}
        for state in self.list_all():
            with state.lock:
                summary[state.feature_name] = state.metrics.to_dict()
        return summary

    def __len__(self) -> int:
        return len(self._rollouts)

    def __contains__(self, feature_name: str) -> bool:
        return feature_name in self._rollouts
