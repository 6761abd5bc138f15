"""Counter store interface.

The services should depend on this abstraction (not the concrete backend)
so the storage technology can be swapped without touching admission logic.

Every implementation must:
- make :meth:`AbstractCounterStore.increment` atomic with respect to
  concurrent callers, including setting the expiry on the first increment;
- raise :class:`~ratewarden.core.errors.StoreUnavailableError` for any
  backend failure so callers can apply their degradation policy.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterable


class AbstractCounterStore(ABC):
    """Interface for the shared key-value store."""

    @abstractmethod
    async def increment(self, key: str, *, ttl_seconds: int) -> int:
        """Atomically increment ``key`` and return the new value.

        When the returned value is 1 (first increment), the key's expiry is
        set to ``ttl_seconds`` as part of the same atomic step.

        Args:
            key: Counter key.
            ttl_seconds: Expiry applied when the counter is created.

        Returns:
            int: Counter value after the increment.
        """
        raise NotImplementedError

    @abstractmethod
    async def decrement(self, key: str) -> int:
        """Atomically decrement an existing counter, never below zero.

        Missing keys are left untouched and reported as 0.
        """
        raise NotImplementedError

    @abstractmethod
    async def expire(self, key: str, seconds: int) -> bool:
        """Set a key's time-to-live. Returns False when the key is missing."""
        raise NotImplementedError

    @abstractmethod
    async def get(self, key: str) -> str | None:
        raise NotImplementedError

    @abstractmethod
    async def set(self, key: str, value: str, *, expire_in_seconds: int | None = None) -> None:
        raise NotImplementedError

    @abstractmethod
    async def delete(self, key: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def delete_many(self, keys: Iterable[str]) -> int:
        """Delete several keys in a single round trip.

        Returns:
            int: Number of keys that existed and were removed.
        """
        raise NotImplementedError

    @abstractmethod
    async def ttl(self, key: str) -> int | None:
        """Remaining time-to-live in seconds, or None if missing/persistent."""
        raise NotImplementedError

    @abstractmethod
    async def ping(self) -> bool:
        """Return True when the backend is reachable."""
        raise NotImplementedError

    async def close(self) -> None:
        """Release backend resources. Default is a no-op."""
        return None
