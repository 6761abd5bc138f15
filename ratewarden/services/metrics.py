"""Per-caller behavioral metrics used by abuse detection.

Metrics are stored as a JSON blob under ``metrics:{digest}`` with a one hour
retention that is refreshed on every write. A blob that fails to decode is
treated as absent: tracking restarts from defaults and no error reaches the
caller.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ratewarden.adapters.store.base import AbstractCounterStore
from ratewarden.core.logging import short_digest

logger = logging.getLogger(__name__)

METRICS_KEY_PREFIX = "metrics"
METRICS_TTL_SECONDS = 3600


def metrics_key(digest: str) -> str:
    return f"{METRICS_KEY_PREFIX}:{digest}"


class AbuseMetrics(BaseModel):
    """Accumulated request behavior for one caller digest."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    request_count: int = Field(0, ge=0)
    error_count: int = Field(0, ge=0)
    upload_size_bytes: int = Field(0, ge=0)
    first_request_at: int = Field(..., description="Epoch ms of the first tracked request")
    last_request_at: int = Field(..., description="Epoch ms of the latest tracked request")

    @classmethod
    def fresh(cls, now_ms: int) -> "AbuseMetrics":
        return cls(first_request_at=now_ms, last_request_at=now_ms)

    @property
    def error_rate(self) -> float:
        if self.request_count == 0:
            return 0.0
        return self.error_count / self.request_count


class DecodeState(str, Enum):
    OK = "ok"
    MISSING = "missing"
    CORRUPTED = "corrupted"


@dataclass(frozen=True)
class DecodedMetrics:
    """Result of decoding a stored metrics blob.

    ``metrics`` is None unless ``state`` is ``ok``.
    """

    state: DecodeState
    metrics: AbuseMetrics | None = None


def decode_metrics(raw: str | None) -> DecodedMetrics:
    """Decode a stored blob into metrics or a missing/corrupted sentinel."""
    if raw is None:
        return DecodedMetrics(DecodeState.MISSING)
    try:
        return DecodedMetrics(DecodeState.OK, AbuseMetrics.model_validate_json(raw))
    except ValidationError:
        return DecodedMetrics(DecodeState.CORRUPTED)


class AbuseMetricsTracker:
    """Records request outcomes into the per-digest metrics blob.

    Updates are read-modify-write on a single key. Concurrent requests from
    the same caller may occasionally drop an update; these numbers feed
    heuristics only, admission counters use atomic store primitives.
    """

    def __init__(
        self,
        store: AbstractCounterStore,
        *,
        ttl_seconds: int = METRICS_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._ttl_seconds = ttl_seconds
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def load(self, digest: str) -> DecodedMetrics:
        """Read and decode the metrics for ``digest``.

        Raises:
            StoreUnavailableError: If the store cannot be reached.
        """
        decoded = decode_metrics(await self._store.get(metrics_key(digest)))
        if decoded.state is DecodeState.CORRUPTED:
            logger.warning(
                "metrics.corrupted",
                extra={"digest": short_digest(digest)},
            )
        return decoded

    async def record(self, digest: str, success: bool, upload_size_bytes: int = 0) -> AbuseMetrics:
        """Add one request outcome to the metrics for ``digest``.

        Args:
            digest: Caller digest.
            success: Whether the request succeeded; failures bump error_count.
            upload_size_bytes: Bytes uploaded by the request.

        Returns:
            AbuseMetrics: The metrics as written.

        Raises:
            StoreUnavailableError: If the store cannot be reached.
        """
        now_ms = self._now_ms()
        decoded = await self.load(digest)
        current = decoded.metrics or AbuseMetrics.fresh(now_ms)

        updated = current.model_copy(
            update={
                "request_count": current.request_count + 1,
                "error_count": current.error_count + (0 if success else 1),
                "upload_size_bytes": current.upload_size_bytes + max(0, upload_size_bytes),
                "last_request_at": now_ms,
            }
        )
        await self._store.set(
            metrics_key(digest),
            updated.model_dump_json(),
            expire_in_seconds=self._ttl_seconds,
        )
        return updated
