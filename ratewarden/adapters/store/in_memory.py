"""In-memory counter store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
  Use the Redis backend for any real deployment.
- Thread-safe: uses a lock around shared state, so concurrent increments
  never lose updates.
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterable

from ratewarden.adapters.store.base import AbstractCounterStore


@dataclass
class _Entry:
    value: str
    expires_at: float | None


class InMemoryCounterStore(AbstractCounterStore):
    """Key-value store with TTL semantics mirroring the Redis backend.

    Expired entries are dropped lazily on access.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        """Initialize the in-memory store.

        Args:
            clock: Time source function returning UNIX time in seconds.
        """
        self._clock = clock
        self._lock = threading.RLock()
        self._entries: dict[str, _Entry] = {}

    def _live_entry_locked(self, key: str) -> _Entry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry

    async def increment(self, key: str, *, ttl_seconds: int) -> int:
        with self._lock:
            entry = self._live_entry_locked(key)
            if entry is None:
                entry = _Entry(value="0", expires_at=None)
                self._entries[key] = entry
            count = int(entry.value) + 1
            entry.value = str(count)
            if count == 1:
                entry.expires_at = self._clock() + ttl_seconds
            return count

    async def decrement(self, key: str) -> int:
        with self._lock:
            entry = self._live_entry_locked(key)
            if entry is None:
                return 0
            count = max(0, int(entry.value) - 1)
            entry.value = str(count)
            return count

    async def expire(self, key: str, seconds: int) -> bool:
        with self._lock:
            entry = self._live_entry_locked(key)
            if entry is None:
                return False
            entry.expires_at = self._clock() + seconds
            return True

    async def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._live_entry_locked(key)
            return entry.value if entry else None

    async def set(self, key: str, value: str, *, expire_in_seconds: int | None = None) -> None:
        with self._lock:
            expires_at = (
                self._clock() + expire_in_seconds if expire_in_seconds is not None else None
            )
            self._entries[key] = _Entry(value=value, expires_at=expires_at)

    async def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    async def delete_many(self, keys: Iterable[str]) -> int:
        removed = 0
        with self._lock:
            for key in keys:
                if self._live_entry_locked(key) is not None:
                    del self._entries[key]
                    removed += 1
        return removed

    async def ttl(self, key: str) -> int | None:
        with self._lock:
            entry = self._live_entry_locked(key)
            if entry is None or entry.expires_at is None:
                return None
            return max(0, int(math.ceil(entry.expires_at - self._clock())))

    async def ping(self) -> bool:
        return True

    def clear(self) -> None:
        """Remove every entry (test helper)."""
        with self._lock:
            self._entries.clear()
