"""
Bounded insertion-ordered set for signature / mint deduplication.
"""
import logging
from collections import deque

logger = logging.getLogger("cache")


class BoundedSet:
    """
    Set with FIFO eviction.

    Once more than ``max_size`` keys are held, the oldest are dropped
    until only ``keep`` remain, so ``len()`` never exceeds ``max_size``
    after an ``add``. Re-adding a present key does not refresh its age.
    """

    def __init__(self, max_size: int, keep: int | None = None, name: str = "cache"):
        if max_size < 1:
            raise ValueError("max_size must be positive")
        if keep is None:
            keep = max_size // 2
        if not 0 <= keep <= max_size:
            raise ValueError("keep must be between 0 and max_size")
        self.max_size = max_size
        self.keep = keep
        self.name = name
        self._order: deque[str] = deque()
        self._members: set[str] = set()

    def __contains__(self, key: str) -> bool:
        return key in self._members

    def __len__(self) -> int:
        return len(self._members)

    def add(self, key: str) -> bool:
        """Insert ``key``. Returns True if it was not already present."""
        if key in self._members:
            return False
        self._order.append(key)
        self._members.add(key)
        if len(self._members) > self.max_size:
            self._prune()
        return True

    def _prune(self):
        dropped = 0
        while len(self._order) > self.keep:
            self._members.discard(self._order.popleft())
            dropped += 1
        logger.debug(f"Pruned {dropped} oldest entries from {self.name}")
