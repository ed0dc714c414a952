"""
Feature Flag Adapters

The rollout controller never gates requests itself: it tells a flag
adapter which percentage of traffic should see a feature and when to
switch it off. ``FeatureFlagManager`` is an in-memory adapter with
sticky, hash-based percentage targeting.
"""
from typing import Dict, List, Optional, Set, Any
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from datetime import datetime
import hashlib
import threading

from clock import utcnow
from logger import get_logger

logger = get_logger(__name__)


class FlagAdapter(ABC):
    """Interface the rollout controller uses to drive a flag store"""

    @abstractmethod
    def apply_percentage(self, feature_name: str, percentage: float):
        """Expose the feature to ``percentage`` (0-100) of traffic"""

    @abstractmethod
    def disable(self, feature_name: str):
        """Force-disable the feature (kill switch)"""


class FlagStatus(Enum):
    """Feature flag status"""
    ENABLED = "enabled"           # Feature is enabled for everyone
    DISABLED = "disabled"         # Feature is disabled
    PERCENTAGE = "percentage"     # Enabled for percentage of users


@dataclass
class FeatureFlag:
    """Flag state held by FeatureFlagManager"""
    name: str
    status: FlagStatus
    rollout_percentage: float = 0.0

    # Always enabled for these users unless the flag is disabled
    enabled_users: Set[str] = field(default_factory=set)

    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    enabled_count: int = 0
    disabled_count: int = 0


class FeatureFlagManager(FlagAdapter):
    """
    In-memory feature flag store

    Percentage targeting hashes ``flag_name:user_id`` into one of 100
    buckets, so a given user stays in (or out of) the rollout for as long
    as the percentage does not drop below their bucket. Requests without
    a user id are never in a partial rollout.

    Example:
        flags = FeatureFlagManager()
        flags.apply_percentage("newSearch", 5)

        if flags.is_enabled("newSearch", user_id="user123"):
            results = new_search(query)
        else:
            results = old_search(query)

        flags.disable("newSearch")  # kill switch
    """

    def __init__(self):
        self._flags: Dict[str, FeatureFlag] = {}
        self._lock = threading.Lock()

    def apply_percentage(self, feature_name: str, percentage: float):
        self.set_rollout_percentage(feature_name, percentage)

    def disable(self, feature_name: str):
        self.disable_flag(feature_name)

    def set_rollout_percentage(self, name: str, percentage: float):
        """Update rollout percentage, creating the flag if needed"""
        if not 0 <= percentage <= 100:
            raise ValueError(f"Rollout percentage must be within 0-100, got {percentage}")

        status = FlagStatus.PERCENTAGE if 0 < percentage < 100 else (
            FlagStatus.ENABLED if percentage >= 100 else FlagStatus.DISABLED
        )

        with self._lock:
            flag = self._flags.get(name)
            if flag is None:
                flag = FeatureFlag(name=name, status=status)
                self._flags[name] = flag

            flag.status = status
            flag.rollout_percentage = percentage
            flag.updated_at = utcnow()

        logger.info(f"Updated rollout percentage for {name}: {percentage}%")

    def disable_flag(self, name: str):
        """Fully disable a flag (kill switch)"""
        with self._lock:
            flag = self._flags.get(name)
            if flag is None:
                flag = FeatureFlag(name=name, status=FlagStatus.DISABLED)
                self._flags[name] = flag

            flag.status = FlagStatus.DISABLED
            flag.rollout_percentage = 0.0
            flag.updated_at = utcnow()

        logger.warning(f"Feature flag disabled: {name}")

    def add_user_to_flag(self, name: str, user_id: str):
        """Add user to flag allowlist"""
        with self._lock:
            flag = self._flags.get(name)
            if flag is None:
                return
            flag.enabled_users.add(user_id)
            flag.updated_at = utcnow()
        logger.info(f"Added user {user_id} to flag {name}")

    def is_enabled(self, name: str, user_id: Optional[str] = None) -> bool:
        """
        Check if feature is enabled

        Args:
            name: Flag name
            user_id: Stable user/account identifier used for bucketing

        Returns:
            True if feature is enabled
        """
        flag = self._flags.get(name)
        if flag is None:
            logger.debug(f"Feature flag not found: {name}, defaulting to disabled")
            return False

        enabled = self._evaluate(flag, user_id)

        with self._lock:
            if enabled:
                flag.enabled_count += 1
            else:
                flag.disabled_count += 1

        return enabled

    def _evaluate(self, flag: FeatureFlag, user_id: Optional[str]) -> bool:
        if flag.status == FlagStatus.DISABLED:
            return False

        if flag.status == FlagStatus.ENABLED:
            return True

        if user_id is None:
            return False

        if user_id in flag.enabled_users:
            return True

        return self.bucket(flag.name, user_id) < flag.rollout_percentage

    @staticmethod
    def bucket(flag_name: str, user_id: str) -> int:
        """Stable bucket 0-99 for a user within a flag"""
        hash_input = f"{flag_name}:{user_id}".encode('utf-8')
        hash_value = int(hashlib.md5(hash_input).hexdigest(), 16)
        return hash_value % 100

    def get_flag(self, name: str) -> Optional[FeatureFlag]:
        return self._flags.get(name)

    def list_flags(self) -> List[FeatureFlag]:
        return list(self._flags.values())

    def get_flag_stats(self, name: str) -> Dict[str, Any]:
        """Get statistics for a flag"""
        flag = self._flags.get(name)
        if flag is None:
            return {}

        total_checks = flag.enabled_count + flag.disabled_count
        enabled_percentage = (
            flag.enabled_count / total_checks * 100
            if total_checks > 0 else 0
        )

        return {
            "name": name,
            "status": flag.status.value,
            "rollout_percentage": flag.rollout_percentage,
            "enabled_count": flag.enabled_count,
            "disabled_count": flag.disabled_count,
            "total_checks": total_checks,
            "actual_enabled_percentage": enabled_percentage,
            "enabled_users": len(flag.enabled_users),
        }
