"""
Hourly cap on normal (non-emergency) scaling actions.
"""

import threading
from datetime import datetime, timedelta
from typing import Callable, Optional

from .events import ScalingEventLog
from .models import ScalingError, utc_now


class RateLimitExceeded(ScalingError):
    """Raised when the hourly scaling budget is used up"""
    pass


class ActionBudget:
    """
    Remaining number of actuations allowed in the trailing window.

    Computed once per tick from the event log and then claimed by rule
    evaluations running on different pools concurrently.
    """

    def __init__(self, remaining: int):
        self._remaining = max(0, remaining)
        self._claimed = 0
        self._lock = threading.Lock()

    @classmethod
    def from_event_log(cls, event_log: ScalingEventLog, max_events: int,
                       window: timedelta = timedelta(hours=1),
                       clock: Optional[Callable[[], datetime]] = None) -> "ActionBudget":
        """Budget left after the events already recorded in the window"""
        now = (clock or utc_now)()
        used = event_log.count_since(now - window)
        return cls(max_events - used)

    def claim(self) -> None:
        """
        Take one unit of budget.

        Raises:
            RateLimitExceeded: If nothing is left
        """
        with self._lock:
            if self._remaining <= 0:
                raise RateLimitExceeded("Maximum scaling events per hour reached")
            self._remaining -= 1
            self._claimed += 1

    @property
    def remaining(self) -> int:
        with self._lock:
            return self._remaining

    @property
    def exhausted(self) -> bool:
        return self.remaining <= 0

    @property
    def claimed(self) -> int:
        with self._lock:
            return self._claimed
