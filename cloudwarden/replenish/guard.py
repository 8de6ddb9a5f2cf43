"""
Replenish dedup — suppresses repeated automatic triggers for the same failure.

Keys are (user_id, target) where target names the dead instance or the
invalid credential. A key stays claimed while its replenish is running and
for ``window`` seconds after it finished, so a monitor tick that still sees
the old instance missing does not provision a second replacement.

Manual triggers never go through here.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)

GuardKey = tuple[int, str]


class ReplenishGuard:
    def __init__(self, window: float = 900.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.window = window
        self._clock = clock
        self._running: set[GuardKey] = set()
        self._recent: dict[GuardKey, float] = {}

    def try_acquire(self, user_id: int, target: str) -> bool:
        """Claim a key. Returns False if it is running or inside its window."""
        key = (user_id, str(target))
        if key in self._running:
            logger.debug("Dedup: replenish for %s already running, skipping", key)
            return False
        finished = self._recent.get(key)
        if finished is not None:
            if self._clock() - finished < self.window:
                logger.debug("Dedup: replenish for %s finished recently, skipping", key)
                return False
            del self._recent[key]
        self._running.add(key)
        return True

    def release(self, user_id: int, target: str) -> None:
        """Release a key and start its quiet window, whatever the outcome was."""
        key = (user_id, str(target))
        self._running.discard(key)
        self._recent[key] = self._clock()

