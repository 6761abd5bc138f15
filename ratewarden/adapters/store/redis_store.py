"""Redis-backed counter store.

Shared across every service instance. Counter mutations run as server-side
Lua scripts so increment-then-expire happens in one atomic step: a crash or a
concurrent caller can never leave a window counter without an expiry.

**Security Note**: use ``rediss://`` URLs with a password when Redis is not on
a trusted network. The connection URL is never logged.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Iterable, TypeVar

from redis.asyncio import Redis
from redis.exceptions import RedisError

from ratewarden.adapters.store.base import AbstractCounterStore
from ratewarden.core.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Undecodable bytes become U+FFFD so a damaged blob reads as corrupted data
CLIENT_OPTIONS: dict[str, Any] = {
    "encoding": "utf-8",
    "encoding_errors": "replace",
    "decode_responses": True,
}

# KEYS[1] counter key, ARGV[1] ttl seconds
INCREMENT_SCRIPT = """
local count = redis.call('INCR', KEYS[1])
if count == 1 then
  redis.call('EXPIRE', KEYS[1], tonumber(ARGV[1]))
end
return count
"""

# KEYS[1] counter key; leaves missing keys and the TTL untouched
DECREMENT_SCRIPT = """
local current = redis.call('GET', KEYS[1])
if not current then
  return 0
end
if tonumber(current) <= 0 then
  return 0
end
return redis.call('DECR', KEYS[1])
"""


class RedisCounterStore(AbstractCounterStore):
    """Counter store over ``redis.asyncio``."""

    def __init__(self, client: Redis) -> None:
        self._client = client
        self._increment_script = client.register_script(INCREMENT_SCRIPT)
        self._decrement_script = client.register_script(DECREMENT_SCRIPT)

    @classmethod
    def from_url(cls, url: str, *, socket_timeout: float | None = None) -> "RedisCounterStore":
        """Create a store with its own connection pool.

        Args:
            url: Redis connection URL.
            socket_timeout: Per-command timeout in seconds.
        """
        client = Redis.from_url(
            url,
            **CLIENT_OPTIONS,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client)

    async def _call(self, operation: str, fn: Callable[[], Awaitable[T]]) -> T:
        try:
            return await fn()
        except (RedisError, OSError) as exc:
            raise StoreUnavailableError(
                code="store_unavailable",
                message=f"Redis {operation} failed: {type(exc).__name__}",
                details={"operation": operation},
            ) from exc

    async def increment(self, key: str, *, ttl_seconds: int) -> int:
        result: Any = await self._call(
            "increment",
            lambda: self._increment_script(keys=[key], args=[ttl_seconds]),
        )
        return int(result)

    async def decrement(self, key: str) -> int:
        result: Any = await self._call(
            "decrement",
            lambda: self._decrement_script(keys=[key]),
        )
        return int(result)

    async def expire(self, key: str, seconds: int) -> bool:
        return bool(await self._call("expire", lambda: self._client.expire(key, seconds)))

    async def get(self, key: str) -> str | None:
        return await self._call("get", lambda: self._client.get(key))

    async def set(self, key: str, value: str, *, expire_in_seconds: int | None = None) -> None:
        await self._call("set", lambda: self._client.set(key, value, ex=expire_in_seconds))

    async def delete(self, key: str) -> None:
        await self._call("delete", lambda: self._client.delete(key))

    async def delete_many(self, keys: Iterable[str]) -> int:
        key_list = list(keys)
        if not key_list:
            return 0
        return int(await self._call("delete_many", lambda: self._client.delete(*key_list)))

    async def ttl(self, key: str) -> int | None:
        remaining = int(await self._call("ttl", lambda: self._client.ttl(key)))
        # -2: missing key, -1: no expiry
        return remaining if remaining >= 0 else None

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except (RedisError, OSError) as exc:
            logger.warning("store.ping_failed", extra={"error_type": type(exc).__name__})
            return False

    async def close(self) -> None:
        await self._client.aclose()
        logger.debug("store.closed")
