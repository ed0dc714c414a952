"""
Rollout Exception Hierarchy

Only explicit misuse raises; normal negative outcomes (unknown feature,
criteria not met, rollback triggered) are reported through return values
and the event stream.
"""
from typing import Optional


class RolloutError(Exception):
    """
    Base class for rollout controller errors

    Attributes:
        message: Human-readable error message
        feature_name: Feature the error relates to, if any
    """

    def __init__(self, message: str, feature_name: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.feature_name = feature_name

    def __str__(self):
        if self.feature_name:
            return f"{self.message} (feature: {self.feature_name})"
        return self.message


class RolloutAlreadyExistsError(RolloutError):
    """A rollout is already registered for this feature"""

    def __init__(self, feature_name: str):
        super().__init__("Rollout already exists", feature_name=feature_name)
