"""
Admission control for getTransaction enrichment fetches.
"""
import time
from typing import Callable

from feeds.constants import MAX_PENDING_FETCHES, MIN_FETCH_INTERVAL_S


class FetchThrottle:
    """
    Caps fetches in flight and spaces out fetch starts.

    ``try_acquire`` is a synchronous yes/no: no waiting, no queueing.
    Every admitted fetch must be paired with exactly one ``release``.
    Only used from the event loop thread, so no locking.
    """

    def __init__(
        self,
        max_in_flight: int = MAX_PENDING_FETCHES,
        min_interval: float = MIN_FETCH_INTERVAL_S,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_in_flight = max_in_flight
        self.min_interval = min_interval
        self._clock = clock
        self.in_flight: int = 0
        self.last_start: float | None = None

    def try_acquire(self) -> bool:
        if self.in_flight >= self.max_in_flight:
            return False
        now = self._clock()
        if self.last_start is not None and now - self.last_start < self.min_interval:
            return False
        self.in_flight += 1
        self.last_start = now
        return True

    def release(self):
        self.in_flight = max(0, self.in_flight - 1)
