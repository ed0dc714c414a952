"""
Deployment Module

Staged feature rollout with health-driven progression and automatic
rollback.

Quick Start:
    from deployment import RolloutController, FeatureFlagManager

    flags = FeatureFlagManager()
    controller = RolloutController(flag_adapter=flags)

    # Canary 1% -> Early Adopters 5% -> Beta 25% -> General Availability 100%
    controller.create_rollout("newSearch", "Vector search backend")
    controller.progress("newSearch")

    # Report outcomes; breaches roll the feature back immediately
    controller.record_outcome("newSearch", success=True, latency_ms=120)

    if flags.is_enabled("newSearch", user_id="user123"):
        # Use new feature
        pass
"""

from .feature_flags import (
    FlagAdapter,
    FeatureFlagManager,
    FeatureFlag,
    FlagStatus
)

from .stages import (
    RolloutStage,
    StageCriteria,
    StageStatus,
    RolloutStatus,
    StageProgressionEngine,
    default_stages,
    can_advance
)

from .rollout import (
    RolloutRegistry,
    RolloutState,
    RolloutPolicy
)

from .rollback import (
    RollbackController,
    RollbackRecord
)

from .scheduler import RolloutScheduler

from .controller import RolloutController

from .exceptions import (
    RolloutError,
    RolloutAlreadyExistsError
)

__all__ = [
    # Feature flags
    "FlagAdapter",
    "FeatureFlagManager",
    "FeatureFlag",
    "FlagStatus",

    # Stages
    "RolloutStage",
    "StageCriteria",
    "StageStatus",
    "RolloutStatus",
    "StageProgressionEngine",
    "default_stages",
    "can_advance",

    # Rollout
    "RolloutRegistry",
    "RolloutState",
    "RolloutPolicy",

    # Rollback
    "RollbackController",
    "RollbackRecord",

    # Scheduling
    "RolloutScheduler",
    "RolloutController",

    # Errors
    "RolloutError",
    "RolloutAlreadyExistsError",
]
