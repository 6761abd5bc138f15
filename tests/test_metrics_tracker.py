"""Unit tests for per-caller abuse metrics."""

import json

import pytest

from ratewarden.services.metrics import (
    AbuseMetrics,
    AbuseMetricsTracker,
    DecodeState,
    decode_metrics,
    metrics_key,
)

DIGEST = "m" * 32


@pytest.fixture
def tracker(store, clock) -> AbuseMetricsTracker:
    return AbuseMetricsTracker(store, clock=clock)


class TestDecodeMetrics:
    def test_missing(self) -> None:
        assert decode_metrics(None).state is DecodeState.MISSING

    @pytest.mark.parametrize(
        "raw",
        ["not json", "[]", '{"request_count": 1}', '{"request_count": -1, "first_request_at": 1, "last_request_at": 1}'],
    )
    def test_corrupted(self, raw) -> None:
        decoded = decode_metrics(raw)
        assert decoded.state is DecodeState.CORRUPTED
        assert decoded.metrics is None

    def test_ok(self) -> None:
        raw = json.dumps(
            {
                "request_count": 4,
                "error_count": 1,
                "upload_size_bytes": 10,
                "first_request_at": 1000,
                "last_request_at": 2000,
            }
        )
        decoded = decode_metrics(raw)
        assert decoded.state is DecodeState.OK
        assert decoded.metrics.error_rate == 0.25


def test_error_rate_with_no_requests() -> None:
    assert AbuseMetrics.fresh(0).error_rate == 0.0


@pytest.mark.asyncio
async def test_first_record_initializes_metrics(tracker, clock) -> None:
    now_ms = int(clock() * 1000)

    metrics = await tracker.record(DIGEST, success=True, upload_size_bytes=2048)

    assert metrics.request_count == 1
    assert metrics.error_count == 0
    assert metrics.upload_size_bytes == 2048
    assert metrics.first_request_at == now_ms
    assert metrics.last_request_at == now_ms


@pytest.mark.asyncio
async def test_record_accumulates_and_refreshes_ttl(tracker, store, clock) -> None:
    start_ms = int(clock() * 1000)
    await tracker.record(DIGEST, success=True, upload_size_bytes=100)
    clock.advance(600)
    metrics = await tracker.record(DIGEST, success=False, upload_size_bytes=50)

    assert metrics.request_count == 2
    assert metrics.error_count == 1
    assert metrics.upload_size_bytes == 150
    assert metrics.first_request_at == start_ms
    assert metrics.last_request_at == start_ms + 600_000
    assert await store.ttl(metrics_key(DIGEST)) == 3600


@pytest.mark.asyncio
async def test_metrics_expire_after_an_hour_of_inactivity(tracker, clock) -> None:
    await tracker.record(DIGEST, success=True)
    clock.advance(3600)

    assert (await tracker.load(DIGEST)).state is DecodeState.MISSING


@pytest.mark.asyncio
async def test_corrupted_blob_restarts_tracking(tracker, store) -> None:
    await store.set(metrics_key(DIGEST), "{broken")

    assert (await tracker.load(DIGEST)).state is DecodeState.CORRUPTED
    metrics = await tracker.record(DIGEST, success=False)
    assert metrics.request_count == 1
    assert metrics.error_count == 1


@pytest.mark.asyncio
async def test_negative_upload_size_ignored(tracker) -> None:
    metrics = await tracker.record(DIGEST, success=True, upload_size_bytes=-10)
    assert metrics.upload_size_bytes == 0

