"""
clock.py - Injectable time source for duration-based rollout criteria
"""
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Timezone-aware current UTC time"""
    return datetime.now(timezone.utc)


class ManualClock:
    """
    Clock that only moves when told to

    Lets stage duration criteria be exercised without real delays:

        clock = ManualClock()
        controller = RolloutController(clock=clock)
        clock.advance(hours=25)
    """

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self._now

    def advance(self, **kwargs) -> datetime:
        """Move forward by a timedelta expressed as keyword args (hours=, minutes=...)"""
        self._now = self._now + timedelta(**kwargs)
        return self._now

    def set(self, now: datetime):
        self._now = now
