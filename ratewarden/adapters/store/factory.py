"""Factory pattern for creating counter store instances."""

from ratewarden.adapters.store.base import AbstractCounterStore
from ratewarden.adapters.store.in_memory import InMemoryCounterStore
from ratewarden.adapters.store.redis_store import RedisCounterStore
from ratewarden.core.config import StoreSettings, settings
from ratewarden.core.errors import ConfigurationAppError


def create_counter_store(store_settings: StoreSettings | None = None) -> AbstractCounterStore:
    """Instantiate the configured counter store backend.

    Args:
        store_settings: Optional override; defaults to the global settings.

    Returns:
        AbstractCounterStore: Configured store instance.

    Raises:
        ConfigurationAppError: If the backend is unknown or misconfigured.
    """
    cfg = store_settings or settings.store
    backend = cfg.backend.lower()

    if backend == "redis":
        if not cfg.redis_url:
            raise ConfigurationAppError(
                code="store_missing_url",
                message="Redis backend requires STORE_REDIS_URL",
            )
        return RedisCounterStore.from_url(
            cfg.redis_url,
            socket_timeout=cfg.socket_timeout_seconds,
        )

    if backend == "memory":
        return InMemoryCounterStore()

    raise ConfigurationAppError(
        code="store_unknown_backend",
        message=f"Unknown store backend: '{backend}'. Supported backends: redis, memory",
    )
