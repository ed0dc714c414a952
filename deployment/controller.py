"""
Rollout Controller

Explicitly constructed entry point that wires the registry, alerting,
rollback and scheduler together around one flag adapter and one clock.
"""
from typing import Dict, List, Optional, Any, Callable

from clock import Clock, utcnow
from config import settings as default_settings
from logger import get_logger
from monitoring.alerts import Alert, AlertManager, AlertThresholds
from monitoring.events import EventBus, Subscriber
from deployment.feature_flags import FeatureFlagManager, FlagAdapter
from deployment.rollback import RollbackController
from deployment.rollout import RolloutPolicy, RolloutRegistry, RolloutState
from deployment.scheduler import RolloutScheduler
from deployment.stages import RolloutStage

logger = get_logger(__name__)


class RolloutController:
    """
    Staged rollout and health-monitoring controller

    Example:
        controller = RolloutController(flag_adapter=my_flag_store)
        controller.subscribe(lambda event: dashboard.push(event.name, event.payload))

        controller.create_rollout("newSearch", "Vector search backend")
        controller.progress("newSearch")

        controller.record_outcome("newSearch", success=True, latency_ms=120)
        controller.record_feedback("newSearch", "positive")

        controller.start()      # periodic auto-progression, inside an event loop
        ...
        controller.shutdown()   # stops the timer, rollouts stay as they are
    """

    def __init__(
        self,
        flag_adapter: Optional[FlagAdapter] = None,
        clock: Optional[Clock] = None,
        settings=None,
        thresholds: Optional[AlertThresholds] = None
    ):
        self.settings = settings or default_settings
        self.clock = clock or utcnow
        self.flag_adapter = flag_adapter or FeatureFlagManager()

        self.event_bus = EventBus()
        self.alert_manager = AlertManager(
            self.event_bus,
            thresholds=thresholds or AlertThresholds.from_settings(self.settings),
            max_alerts=self.settings.max_alerts,
            clock=self.clock
        )
        self.rollback_controller = RollbackController(
            self.flag_adapter,
            self.alert_manager,
            self.event_bus,
            clock=self.clock,
            max_history=self.settings.max_rollback_history
        )
        self.registry = RolloutRegistry(
            self.flag_adapter,
            self.event_bus,
            self.alert_manager,
            self.rollback_controller,
            clock=self.clock,
            window_size=self.settings.latency_window_size
        )
        self.scheduler = RolloutScheduler(
            self.registry,
            interval_seconds=self.settings.rollout_check_interval_seconds,
            stalled_after_hours=self.settings.stalled_rollout_hours,
            clock=self.clock
        )

    # Lifecycle

    def start(self):
        self.scheduler.start()

    def shutdown(self):
        self.scheduler.shutdown()

    async def __aenter__(self) -> "RolloutController":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.shutdown()

    def tick(self) -> bool:
        """Run one scheduler check immediately"""
        return self.scheduler.tick()

    # Subscriptions

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        return self.event_bus.subscribe(subscriber)

    # Rollout lifecycle

    def create_rollout(
        self,
        feature_name: str,
        description: str = "",
        stages: Optional[List[RolloutStage]] = None,
        policy: Optional[RolloutPolicy] = None
    ) -> RolloutState:
        return self.registry.create(feature_name, description, stages=stages, policy=policy)

    def progress(self, feature_name: str) -> bool:
        return self.registry.progress(feature_name)

    def record_outcome(
        self,
        feature_name: str,
        success: bool,
        latency_ms: float,
        error: Optional[str] = None
    ):
        self.registry.record_outcome(feature_name, success, latency_ms, error=error)

    def record_feedback(self, feature_name: str, sentiment) -> Optional[Alert]:
        return self.registry.record_feedback(feature_name, sentiment)

    def rollback(self, feature_name: str, reason: str) -> bool:
        return self.registry.rollback(feature_name, reason)

    def remove(self, feature_name: str) -> bool:
        return self.registry.remove(feature_name)

    # Queries

    def get_status(self, feature_name: str) -> Optional[RolloutState]:
        """
        Live rollout state

        The returned object is owned by the registry: treat it as
        read-only and hold ``state.lock`` while reading several fields
        together. Use get_status_snapshot() for a detached copy.
        """
        return self.registry.get(feature_name)

    def get_status_snapshot(self, feature_name: str) -> Optional[Dict[str, Any]]:
        """Detached dict copy of a rollout, taken under its lock"""
        state = self.registry.get(feature_name)
        if state is None:
            return None
        return state.to_dict()

    def list_all(self) -> List[RolloutState]:
        return self.registry.list_all()

    def get_active_alerts(self, feature_name: Optional[str] = None) -> List[Alert]:
        return self.alert_manager.active_alerts(feature_name)

    def get_metrics_summary(self) -> Dict[str, Dict[str, Any]]:
        return self.registry.metrics_summary()

    def resolve_alert(self, alert_id: str) -> bool:
        return self.alert_manager.resolve(alert_id)
