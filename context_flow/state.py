from __future__ import annotations

import time
from enum import Enum
from typing import Callable, Optional


class Activity(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    ERROR = "error"


class MonitorState:
    """Process-wide activity state, owned and mutated only by the Monitor.

    idle -> active when an accepted change starts its pipeline; active -> idle
    when the last in-flight pipeline finishes; any state -> error on a watcher
    fault, after which nothing leaves ``error``.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self.activity = Activity.IDLE
        self.last_activity_time: Optional[float] = None
        self.in_flight = 0
        self.fault: Optional[BaseException] = None
        self._idle_reported = False

    @property
    def is_idle(self) -> bool:
        return self.activity is Activity.IDLE

    def begin_change(self) -> bool:
        if self.activity is Activity.ERROR:
            return False
        self.in_flight += 1
        self.activity = Activity.ACTIVE
        self.last_activity_time = self._clock()
        self._idle_reported = False
        return True

    def finish_change(self) -> None:
        if self.in_flight > 0:
            self.in_flight -= 1
        if self.in_flight == 0 and self.activity is Activity.ACTIVE:
            self.activity = Activity.IDLE

    def fail(self, exc: BaseException) -> None:
        self.activity = Activity.ERROR
        self.fault = exc

    def take_idle_report(self) -> bool:
        """True only on the first check after entering idle."""
        if self.activity is not Activity.IDLE or self._idle_reported:
            return False
        self._idle_reported = True
        return True

    def snapshot(self) -> dict:
        return {
            "activity": self.activity.value,
            "lastActivityTime": self.last_activity_time,
            "inFlight": self.in_flight,
        }
