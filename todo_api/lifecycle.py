"""
Expiration policies.

The dispatcher asks a policy for ``expires_at`` when a task is created, and the
store reapplies a policy to live tasks when retention changes. Policies are
pure: same inputs, same timestamp.
"""

from abc import ABC, abstractmethod
from typing import Dict, Mapping, Optional

from .config import Settings


class LifecyclePolicy(ABC):
    """Strategy computing a task's expiration instant."""

    @abstractmethod
    def expires_at(self, created_time: float, user_id: str) -> Optional[float]:
        """Return the UNIX timestamp at which the task expires, or None for never."""


class RetentionPolicy(LifecyclePolicy):
    """Fixed retention window for every tenant."""

    def __init__(self, retention_seconds: float):
        if retention_seconds <= 0:
            raise ValueError("retention_seconds must be positive")
        self.retention_seconds = float(retention_seconds)

    def expires_at(self, created_time: float, user_id: str) -> Optional[float]:
        return created_time + self.retention_seconds

    def __repr__(self) -> str:
        return f"RetentionPolicy(retention_seconds={self.retention_seconds})"


class PerTenantRetentionPolicy(LifecyclePolicy):
    """Retention window chosen per user, falling back to a default policy."""

    def __init__(self, default: LifecyclePolicy, overrides: Mapping[str, float]):
        self.default = default
        self.overrides: Dict[str, RetentionPolicy] = {
            user_id: RetentionPolicy(seconds) for user_id, seconds in overrides.items()
        }

    def expires_at(self, created_time: float, user_id: str) -> Optional[float]:
        policy = self.overrides.get(user_id, self.default)
        return policy.expires_at(created_time, user_id)


def policy_from_settings(settings: Settings) -> LifecyclePolicy:
    policy: LifecyclePolicy = RetentionPolicy(settings.retention_seconds)
    if settings.retention_overrides:
        policy = PerTenantRetentionPolicy(policy, settings.retention_overrides)
    return policy
