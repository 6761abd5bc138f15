"""Fixed-window counters on top of the shared store.

A window is identified by ``floor(now_ms / window_ms)``; its counter lives
under ``rate_limit:{policy}:{digest}:{window_index}`` and expires one window
length after its first increment. Windows reset purely by expiry.

Note: fixed windows allow a burst of up to ~2x ``max_requests`` straddling a
window boundary.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable

from ratewarden.adapters.store.base import AbstractCounterStore
from ratewarden.services.policies import Policy

KEY_PREFIX = "rate_limit"


@dataclass(frozen=True)
class WindowCount:
    """Counter value for one policy window.

    Attributes:
        count: Requests counted in the window so far.
        window_ms: Window length in milliseconds.
        window_index: Index of the window the count belongs to.
        reset_time_ms: Epoch milliseconds when the next window starts.
    """

    count: int
    window_ms: int
    window_index: int
    reset_time_ms: int


def window_key(policy_name: str, digest: str, window_index: int) -> str:
    return f"{KEY_PREFIX}:{policy_name}:{digest}:{window_index}"


class WindowCounterStore:
    """Increments and inspects fixed-window counters."""

    def __init__(
        self,
        store: AbstractCounterStore,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the window counter store.

        Args:
            store: Shared counter store.
            clock: Time source function returning UNIX time in seconds.
        """
        self._store = store
        self._clock = clock

    def _window_index(self, policy: Policy) -> int:
        now_ms = int(self._clock() * 1000)
        return now_ms // policy.window_ms

    def key_for(self, policy: Policy, digest: str) -> str:
        """Key of the current window counter for ``digest``."""
        return window_key(policy.name, digest, self._window_index(policy))

    def _result(self, policy: Policy, index: int, count: int) -> WindowCount:
        return WindowCount(
            count=count,
            window_ms=policy.window_ms,
            window_index=index,
            reset_time_ms=(index + 1) * policy.window_ms,
        )

    async def increment_and_get(self, policy: Policy, digest: str) -> WindowCount:
        """Atomically count one request in the current window.

        Raises:
            StoreUnavailableError: If the store cannot be reached.
        """
        index = self._window_index(policy)
        count = await self._store.increment(
            window_key(policy.name, digest, index),
            ttl_seconds=policy.window_seconds,
        )
        return self._result(policy, index, count)

    async def current(self, policy: Policy, digest: str) -> WindowCount:
        """Read the current window counter without incrementing it."""
        index = self._window_index(policy)
        raw = await self._store.get(window_key(policy.name, digest, index))
        try:
            count = int(raw) if raw is not None else 0
        except ValueError:
            count = 0
        return self._result(policy, index, count)

    async def release(self, policy: Policy, digest: str) -> int:
        """Give back one slot in the current window (skipped outcomes)."""
        return await self._store.decrement(self.key_for(policy, digest))
