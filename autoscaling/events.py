"""
Scaling event log and best-effort publication to subscribers.
"""

import threading
from collections import deque
from datetime import datetime, timedelta
from typing import Callable, Deque, List, Optional
import logging

from .models import ScalingEvent, utc_now

logger = logging.getLogger(__name__)

EventCallback = Callable[[ScalingEvent], None]


class ScalingEventLog:
    """
    Append-only audit log of scaling events.

    Bounded both by age (retention window) and by count. Supports concurrent
    appenders and readers.
    """

    def __init__(self, retention_seconds: float = 24 * 60 * 60, max_events: int = 1000,
                 clock: Optional[Callable[[], datetime]] = None):
        if max_events <= 0:
            raise ValueError("max_events must be positive")

        self.retention = timedelta(seconds=retention_seconds)
        self._clock = clock or utc_now
        self._events: Deque[ScalingEvent] = deque(maxlen=max_events)
        self._lock = threading.RLock()

    def append(self, event: ScalingEvent) -> None:
        """Record an event and drop events outside the retention window"""
        with self._lock:
            self._events.append(event)
            cutoff = self._clock() - self.retention
            while self._events and self._events[0].timestamp <= cutoff:
                self._events.popleft()

    def count_since(self, since: datetime, include_emergency: bool = True) -> int:
        """Number of events strictly after `since`"""
        with self._lock:
            return sum(
                1 for event in self._events
                if event.timestamp > since and (include_emergency or not event.is_emergency)
            )

    def recent(self, limit: Optional[int] = None) -> List[ScalingEvent]:
        """Events newest first, optionally truncated to `limit`"""
        with self._lock:
            events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        if limit is not None:
            events = events[:max(0, limit)]
        return events

    def for_pool(self, pool: str) -> List[ScalingEvent]:
        """Events for one pool, oldest first"""
        with self._lock:
            return [event for event in self._events if event.resource_pool == pool]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)


class EventBus:
    """
    Observer registry for scaling events.

    Delivery is synchronous and best-effort: a failing subscriber is logged
    and never affects the control loop or other subscribers.
    """

    def __init__(self):
        self._subscribers: List[EventCallback] = []
        self._lock = threading.RLock()

    def subscribe(self, callback: EventCallback) -> Callable[[], None]:
        """Register a callback; returns a function that unsubscribes it"""
        if not callable(callback):
            raise ValueError("callback must be callable")

        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            self.unsubscribe(callback)

        return unsubscribe

    def unsubscribe(self, callback: EventCallback) -> bool:
        """Remove a callback; False if it was not subscribed"""
        with self._lock:
            try:
                self._subscribers.remove(callback)
                return True
            except ValueError:
                return False

    def publish(self, event: ScalingEvent) -> None:
        """Deliver an event to every subscriber"""
        with self._lock:
            subscribers = list(self._subscribers)

        for callback in subscribers:
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Scaling event subscriber {callback!r} failed: {e}")

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)
