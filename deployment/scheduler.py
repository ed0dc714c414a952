"""
Rollout Scheduler

Periodic health/progression check over every in-progress rollout.
"""
from typing import Optional
import threading

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from clock import Clock
from config import settings
from logger import configure_root_logger, get_logger
from monitoring.alerts import AlertSeverity
from deployment.rollout import RolloutRegistry, RolloutState
from deployment.stages import RolloutStatus, StageProgressionEngine
import metrics as prometheus_metrics

logger = get_logger(__name__)

JOB_ID = "rollout_health_check"


class RolloutScheduler:
    """
    Drives auto-progression and re-evaluates rollout health on a timer

    Each tick, for every ``in-progress`` rollout:
    - advance it when ``auto_progress`` is on and the active stage's
      criteria hold (or complete it when already on the final stage)
    - re-run the threshold checks, which may roll it back
    - warn once per stage when a stage has been stuck too long

    Ticks never overlap: a tick that starts while another one is still
    running is skipped. Stopping the scheduler leaves rollouts untouched.

    Example:
        scheduler = RolloutScheduler(registry, interval_seconds=60)
        scheduler.start()      # needs a running asyncio event loop
        ...
        scheduler.shutdown()
    """

    def __init__(
        self,
        registry: RolloutRegistry,
        interval_seconds: Optional[int] = None,
        stalled_after_hours: Optional[float] = None,
        clock: Optional[Clock] = None
    ):
        self.registry = registry
        self.interval_seconds = interval_seconds or settings.rollout_check_interval_seconds
        self.stalled_after_hours = (
            stalled_after_hours if stalled_after_hours is not None
            else settings.stalled_rollout_hours
        )
        self.clock = clock or registry.clock

        self.scheduler: Optional[AsyncIOScheduler] = None
        self._tick_lock = threading.Lock()
        self.tick_count = 0
        self.skipped_ticks = 0

    @property
    def running(self) -> bool:
        return self.scheduler is not None and self.scheduler.running

    def start(self):
        """Start the periodic check"""
        if self.running:
            logger.warning("Rollout scheduler already running")
            return

        configure_root_logger()

        self.scheduler = AsyncIOScheduler()
        self.scheduler.add_job(
            self.tick,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )
        self.scheduler.start()

        logger.info(f"Rollout scheduler started (interval={self.interval_seconds}s)")

    def shutdown(self):
        """Cancel the periodic check"""
        if self.scheduler is None:
            return

        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self.scheduler = None

        logger.info("Rollout scheduler stopped")

    def tick(self) -> bool:
        """
        Run one check over all in-progress rollouts

        Returns:
            False if the tick was skipped because another one was running
        """
        if not self._tick_lock.acquire(blocking=False):
            self.skipped_ticks += 1
            logger.warning("Previous rollout check still running, skipping tick")
            return False

        try:
            self._run_checks()
            self.tick_count += 1
        finally:
            self._tick_lock.release()

        return True

    @prometheus_metrics.track_tick
    def _run_checks(self):
        rollouts = self.registry.list_in_progress()
        logger.debug(f"Checking {len(rollouts)} in-progress rollouts")

        for state in rollouts:
            try:
                self._check_rollout(state)
            except Exception as e:
                logger.error(f"Rollout check failed for {state.feature_name}: {e}")

    def _check_rollout(self, state: RolloutState):
        feature = state.feature_name

        with state.lock:
            if state.status != RolloutStatus.IN_PROGRESS:
                return

            stage = state.current_stage
            now = self.clock()

            if state.policy.auto_progress and stage is not None:
                if StageProgressionEngine.can_advance(stage, state.metrics, now):
                    if state.is_final_stage:
                        self.registry.complete(feature)
                    else:
                        self.registry.progress(feature)

            if self.registry.evaluate(feature):
                return

            if state.status == RolloutStatus.IN_PROGRESS:
                self._check_stalled(state, now)

    def _check_stalled(self, state: RolloutState, now):
        stage = state.current_stage
        if stage is None or stage.started_at is None or stage.stall_alerted:
            return

        hours_active = (now - stage.started_at).total_seconds() / 3600
        if hours_active <= self.stalled_after_hours:
            return

        if StageProgressionEngine.can_advance(stage, state.metrics, now):
            return

        failed = StageProgressionEngine.failed_criteria(stage, state.metrics, now)
        self.registry.alert_manager.raise_alert(
            AlertSeverity.WARNING,
            state.feature_name,
            f"Rollout stalled in stage {stage.name} ({', '.join(failed)} not met)",
            "stalled",
            hours_active,
            self.stalled_after_hours
        )
        stage.stall_alerted = True
