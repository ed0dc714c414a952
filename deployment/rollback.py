"""
Rollback Procedures

Disables a feature and freezes its rollout state when a rollout fails
its health checks or an operator pulls the plug.
"""
from typing import Dict, List, Optional, Any
from dataclasses import dataclass
from datetime import datetime
from collections import deque

from clock import Clock, utcnow
from config import settings
from logger import get_logger
from monitoring.alerts import AlertManager, AlertSeverity
from monitoring.events import EventBus, ROLLOUT_ROLLBACK
from deployment.feature_flags import FlagAdapter
from deployment.stages import RolloutStatus, StageStatus
import metrics as prometheus_metrics

logger = get_logger(__name__)


@dataclass
class RollbackRecord:
    """Audit entry for a performed rollback"""
    feature_name: str
    reason: str
    stage_name: str
    rolled_back_at: datetime
    flag_disabled: bool = True
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "feature_name": self.feature_name,
            "reason": self.reason,
            "stage_name": self.stage_name,
            "rolled_back_at": self.rolled_back_at.isoformat(),
            "flag_disabled": self.flag_disabled,
            "error": self.error,
        }


class RollbackController:
    """
    Emergency rollback (kill switch) for staged rollouts

    A rollback is terminal: the rollout stays ``rolled-back`` until it is
    removed and created again.

    Example:
        controller = RollbackController(flags, alert_manager, event_bus)

        if controller.rollback(rollout_state, reason="High error rate"):
            history = controller.get_rollback_history("newSearch")
    """

    def __init__(
        self,
        flag_adapter: FlagAdapter,
        alert_manager: AlertManager,
        event_bus: EventBus,
        clock: Clock = utcnow,
        max_history: Optional[int] = None
    ):
        self.flag_adapter = flag_adapter
        self.alert_manager = alert_manager
        self.event_bus = event_bus
        self.clock = clock

        self._history: deque = deque(maxlen=max_history or settings.max_rollback_history)

    def rollback(self, state, reason: str) -> bool:
        """
        Roll back a feature

        The caller must hold the rollout's lock.

        Args:
            state: RolloutState, or None when the feature is unknown
            reason: Reason for rollback

        Returns:
            True if the rollout was rolled back by this call
        """
        if state is None:
            logger.warning(f"Rollout not found for rollback (reason: {reason})")
            return False

        feature_name = state.feature_name

        if state.status == RolloutStatus.ROLLED_BACK:
            logger.info(f"Rollout {feature_name} already rolled back, ignoring: {reason}")
            return False

        logger.warning(f"ROLLBACK: {feature_name} - {reason}")

        record = RollbackRecord(
            feature_name=feature_name,
            reason=reason,
            stage_name="pre-rollout",
            rolled_back_at=self.clock()
        )

        # Adapter failures must not leave the rollout half-rolled-back
        try:
            self.flag_adapter.disable(feature_name)
        except Exception as e:
            record.flag_disabled = False
            record.error = str(e)
            logger.error(f"Flag adapter failed to disable {feature_name}: {e}")

        now = record.rolled_back_at
        stage = state.current_stage
        if stage is not None:
            record.stage_name = stage.name
            # A finished stage keeps its completed status and end time
            if stage.status == StageStatus.ACTIVE:
                stage.status = StageStatus.ROLLED_BACK
                stage.ended_at = now

        state.status = RolloutStatus.ROLLED_BACK
        state.updated_at = now

        self._history.append(record)
        prometheus_metrics.record_rollback(feature_name)

        self.alert_manager.raise_alert(
            AlertSeverity.CRITICAL,
            feature_name,
            f"Feature rolled back: {reason}",
            "rollback",
            1,
            0
        )

        if state.policy.notify_on_rollback:
            self.event_bus.publish(ROLLOUT_ROLLBACK, {
                "feature": feature_name,
                "reason": reason,
                "stage": record.stage_name,
            })

        logger.error(f"Rolled back feature {feature_name}: {reason}")

        return True

    def get_rollback_history(
        self,
        feature_name: Optional[str] = None,
        limit: int = 10
    ) -> List[RollbackRecord]:
        """Most recent rollbacks first"""
        history = list(self._history)

        if feature_name:
            history = [r for r in history if r.feature_name == feature_name]

        history = sorted(history, key=lambda r: r.rolled_back_at, reverse=True)

        return history[:limit]

    def get_rollback_stats(self) -> Dict[str, Any]:
        by_feature: Dict[str, int] = {}
        for record in self._history:
            by_feature[record.feature_name] = by_feature.get(record.feature_name, 0) + 1

        return {
            "total_rollbacks": len(self._history),
            "flag_disable_failures": sum(1 for r in self._history if not r.flag_disabled),
            "by_feature": by_feature,
        }
