"""Shared counter store adapters.

Services depend on :class:`AbstractCounterStore` only. Redis is the shared
backend used in every multi-instance deployment; the in-memory backend keeps
local development and the test-suite hermetic.
"""
