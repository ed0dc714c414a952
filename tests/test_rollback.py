"""
Test rollback procedures
"""
from deployment import RolloutPolicy, RolloutStage, RolloutStatus, StageStatus
from monitoring import AlertSeverity


def test_manual_rollback(controller, flag_adapter, events):
    controller.create_rollout("newSearch")
    controller.progress("newSearch")

    assert controller.rollback("newSearch", "Operator request") is True

    state = controller.get_status("newSearch")
    assert state.status == RolloutStatus.ROLLED_BACK
    assert state.stages[0].status == StageStatus.ROLLED_BACK
    flag_adapter.disable.assert_called_once_with("newSearch")

    history = controller.rollback_controller.get_rollback_history("newSearch")
    assert len(history) == 1
    assert history[0].reason == "Operator request"
    assert history[0].stage_name == "Canary"
    assert history[0].flag_disabled is True

    assert [e.name for e in events][-2:] == ["alert:created", "rollout:rollback"]


def test_rollback_is_idempotent(controller, flag_adapter):
    controller.create_rollout("newSearch")
    controller.progress("newSearch")

    assert controller.rollback("newSearch", "first") is True
    assert controller.rollback("newSearch", "second") is False

    flag_adapter.disable.assert_called_once_with("newSearch")
    critical = [
        a for a in controller.get_active_alerts()
        if a.severity == AlertSeverity.CRITICAL
    ]
    assert len(critical) == 1


def test_rollback_unknown_feature(controller, flag_adapter, events):
    assert controller.rollback("missing", "why not") is False

    flag_adapter.disable.assert_not_called()
    assert controller.get_active_alerts() == []
    assert events == []


def test_rollback_before_first_stage(controller):
    controller.create_rollout("newSearch")

    assert controller.rollback("newSearch", "Plan abandoned") is True

    state = controller.get_status("newSearch")
    assert state.status == RolloutStatus.ROLLED_BACK
    assert all(s.status == StageStatus.PENDING for s in state.stages)

    record = controller.rollback_controller.get_rollback_history()[0]
    assert record.stage_name == "pre-rollout"


def test_adapter_failure_still_rolls_back(controller, flag_adapter):
    flag_adapter.disable.side_effect = RuntimeError("flag store unavailable")
    controller.create_rollout("newSearch")
    controller.progress("newSearch")

    assert controller.rollback("newSearch", "High error rate") is True

    assert controller.get_status("newSearch").status == RolloutStatus.ROLLED_BACK
    record = controller.rollback_controller.get_rollback_history("newSearch")[0]
    assert record.flag_disabled is False
    assert record.error == "flag store unavailable"

    stats = controller.rollback_controller.get_rollback_stats()
    assert stats["total_rollbacks"] == 1
    assert stats["flag_disable_failures"] == 1


def test_rolled_back_rollout_does_not_progress(controller, flag_adapter):
    controller.create_rollout("newSearch")
    controller.progress("newSearch")
    controller.rollback("newSearch", "manual")

    assert controller.progress("newSearch") is False
    assert flag_adapter.apply_percentage.call_count == 1


def test_notify_on_rollback_disabled(controller, events):
    controller.create_rollout("quiet", policy=RolloutPolicy(notify_on_rollback=False))

    controller.rollback("quiet", "manual")

    names = [e.name for e in events]
    assert "rollout:rollback" not in names
    assert names[-1] == "alert:created"


def test_history_newest_first(controller, clock):
    for name in ["a", "b", "c"]:
        controller.create_rollout(name)
        controller.rollback(name, f"reason {name}")
        clock.advance(minutes=5)

    history = controller.rollback_controller.get_rollback_history(limit=2)
    assert [r.feature_name for r in history] == ["c", "b"]
    assert history[0].to_dict()["reason"] == "reason c"


def completed_rollout(controller):
    controller.create_rollout(
        "newSearch",
        stages=[RolloutStage("A", 10), RolloutStage("B", 100)]
    )
    controller.progress("newSearch")
    controller.tick()
    controller.tick()

    state = controller.get_status("newSearch")
    assert state.status == RolloutStatus.COMPLETED
    return state


def test_completed_rollout_is_not_auto_rolled_back(controller, flag_adapter):
    state = completed_rollout(controller)
    final_ended_at = state.stages[1].ended_at

    controller.record_outcome("newSearch", success=False, latency_ms=100)

    assert state.status == RolloutStatus.COMPLETED
    assert [s.status for s in state.stages] == [StageStatus.COMPLETED, StageStatus.COMPLETED]
    assert state.stages[1].ended_at == final_ended_at
    flag_adapter.disable.assert_not_called()

    # Breaches are still reported
    metrics = sorted(a.metric for a in controller.get_active_alerts("newSearch"))
    assert metrics == ["errorRate", "successRate"]


def test_manual_rollback_keeps_completed_stage(controller, flag_adapter, clock, events):
    state = completed_rollout(controller)
    final_ended_at = state.stages[1].ended_at

    clock.advance(hours=1)
    assert controller.rollback("newSearch", "Late regression") is True

    assert state.status == RolloutStatus.ROLLED_BACK
    assert [s.status for s in state.stages] == [StageStatus.COMPLETED, StageStatus.COMPLETED]
    assert state.stages[1].ended_at == final_ended_at
    flag_adapter.disable.assert_called_once_with("newSearch")

    assert events[-1].name == "rollout:rollback"
    assert events[-1].payload["stage"] == "B"
