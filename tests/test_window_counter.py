"""Unit tests for fixed-window counters."""

import pytest

from ratewarden.services.policies import Policy
from ratewarden.services.window_counter import WindowCounterStore, window_key

POLICY = Policy("API", window_ms=60_000, max_requests=3)
DIGEST = "d" * 32


@pytest.fixture
def windows(store, clock) -> WindowCounterStore:
    return WindowCounterStore(store, clock=clock)


def test_window_key_format() -> None:
    assert window_key("UPLOAD", "abc", 42) == "rate_limit:UPLOAD:abc:42"


@pytest.mark.asyncio
async def test_increment_reports_window_and_reset(windows, clock) -> None:
    first = await windows.increment_and_get(POLICY, DIGEST)
    second = await windows.increment_and_get(POLICY, DIGEST)

    index = int(clock() * 1000) // 60_000
    assert first.count == 1
    assert second.count == 2
    assert second.window_index == index
    assert second.reset_time_ms == (index + 1) * 60_000


@pytest.mark.asyncio
async def test_counter_expires_with_window(windows, store, clock) -> None:
    await windows.increment_and_get(POLICY, DIGEST)

    assert await store.ttl(windows.key_for(POLICY, DIGEST)) == 60


@pytest.mark.asyncio
async def test_new_window_starts_from_one(windows, clock) -> None:
    for _ in range(3):
        await windows.increment_and_get(POLICY, DIGEST)

    clock.advance(60)
    result = await windows.increment_and_get(POLICY, DIGEST)
    assert result.count == 1


@pytest.mark.asyncio
async def test_current_does_not_increment(windows) -> None:
    assert (await windows.current(POLICY, DIGEST)).count == 0
    await windows.increment_and_get(POLICY, DIGEST)

    assert (await windows.current(POLICY, DIGEST)).count == 1
    assert (await windows.current(POLICY, DIGEST)).count == 1


@pytest.mark.asyncio
async def test_current_treats_garbage_as_zero(windows, store) -> None:
    await store.set(windows.key_for(POLICY, DIGEST), "not-a-number")

    assert (await windows.current(POLICY, DIGEST)).count == 0


@pytest.mark.asyncio
async def test_release_gives_back_one_slot(windows) -> None:
    await windows.increment_and_get(POLICY, DIGEST)
    await windows.increment_and_get(POLICY, DIGEST)

    assert await windows.release(POLICY, DIGEST) == 1
    assert (await windows.current(POLICY, DIGEST)).count == 1
