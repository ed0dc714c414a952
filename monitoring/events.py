"""
Rollout Event Bus

Explicit subscriber list for rollout and alert events. Subscribers are
plain callables receiving a RolloutEvent; delivery is synchronous and in
emission order.
"""
from typing import Callable, Dict, List, Any
from dataclasses import dataclass, field
from datetime import datetime
import threading

from clock import utcnow
from logger import get_logger

logger = get_logger(__name__)

ROLLOUT_CREATED = "rollout:created"
ROLLOUT_PROGRESSED = "rollout:progressed"
ROLLOUT_ROLLBACK = "rollout:rollback"
ALERT_CREATED = "alert:created"
ALERT_RESOLVED = "alert:resolved"

EVENT_NAMES = (
    ROLLOUT_CREATED,
    ROLLOUT_PROGRESSED,
    ROLLOUT_ROLLBACK,
    ALERT_CREATED,
    ALERT_RESOLVED,
)


@dataclass
class RolloutEvent:
    """Event emitted by the rollout controller"""
    name: str
    payload: Dict[str, Any]
    timestamp: datetime = field(default_factory=utcnow)


Subscriber = Callable[[RolloutEvent], None]


class EventBus:
    """
    Fan-out of controller events to independent subscribers

    A subscriber that raises is logged and skipped; the remaining
    subscribers still receive the event and controller state is not
    affected.

    Example:
        bus = EventBus()
        unsubscribe = bus.subscribe(lambda event: print(event.name))
        bus.publish(ROLLOUT_CREATED, {"feature": "newSearch"})
        unsubscribe()
    """

    def __init__(self):
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        """Register a subscriber, returning a callable that removes it"""
        with self._lock:
            self._subscribers.append(subscriber)

        def unsubscribe():
            self.unsubscribe(subscriber)

        return unsubscribe

    def unsubscribe(self, subscriber: Subscriber) -> bool:
        with self._lock:
            try:
                self._subscribers.remove(subscriber)
                return True
            except ValueError:
                return False

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, name: str, payload: Dict[str, Any]) -> RolloutEvent:
        if name not in EVENT_NAMES:
            raise ValueError(f"Unknown event name: {name}")

        event = RolloutEvent(name=name, payload=payload)

        with self._lock:
            subscribers = list(self._subscribers)

        for subscriber in subscribers:
            try:
                subscriber(event)
            except Exception as e:
                logger.error(f"Subscriber {subscriber!r} failed on {name}: {e}")

        logger.debug(f"Published {name} to {len(subscribers)} subscribers")
        return event

    def clear(self):
        with self._lock:
            self._subscribers.clear()
