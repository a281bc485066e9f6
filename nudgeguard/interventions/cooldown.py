"""Per-key cooldown gate.

``try_acquire`` is the only way to open a key, and checking plus setting the
next-allowed time happens under one lock, so two concurrent callers can never
both win the same key. The entry table is LRU-bounded: when full, expired
entries go first, then the least recently acquired key.
"""

import logging
import threading
import time
from collections import OrderedDict

from nudgeguard.models import Clock

logger = logging.getLogger(__name__)


class CooldownGate:
    def __init__(self, max_entries: int = 1024, clock: Clock = time.time) -> None:
        self.max_entries = max_entries
        self._clock = clock
        self._lock = threading.Lock()
        # key -> next allowed time, oldest acquisition first
        self._entries: OrderedDict[str, float] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def try_acquire(self, key: str, cooldown_seconds: float) -> bool:
        """Open ``key`` for one intervention if it is not cooling down.

        Returns:
            True if the caller won the key (and the cooldown now starts), False otherwise.
        """
        with self._lock:
            now = self._clock()
            next_allowed = self._entries.get(key)
            if next_allowed is not None and now < next_allowed:
                return False
            self._entries[key] = now + max(cooldown_seconds, 0.0)
            self._entries.move_to_end(key)
            self._enforce_cap(now)
            return True

    def remaining(self, key: str) -> float:
        """Seconds until ``key`` may be acquired again (0 if it is open)."""
        with self._lock:
            next_allowed = self._entries.get(key)
            if next_allowed is None:
                return 0.0
            return max(next_allowed - self._clock(), 0.0)

    def reset(self, key: str | None = None) -> None:
        """Reopen ``key``, or every key when called without one."""
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def snapshot(self) -> dict[str, float]:
        with self._lock:
            return dict(self._entries)

    def _enforce_cap(self, now: float) -> None:
        if len(self._entries) <= self.max_entries:
            return
        for key in [k for k, until in self._entries.items() if until <= now]:
            del self._entries[key]
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Cooldown table full, evicted '%s'", evicted)
