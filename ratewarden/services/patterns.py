"""Heuristic abuse patterns and their evaluation.

Patterns are an ordered table; evaluation stops at the first match. A
``captcha`` or ``block`` match escalates the caller by writing an abuse
status under ``abuse:{digest}`` that expires after the pattern's duration.
``warn`` matches are only logged.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Sequence

from ratewarden.adapters.store.base import AbstractCounterStore
from ratewarden.core.logging import short_digest
from ratewarden.services.metrics import AbuseMetrics

logger = logging.getLogger(__name__)

ABUSE_KEY_PREFIX = "abuse"

MINUTE_MS = 60 * 1000
MIB = 1024 * 1024

BOT_USER_AGENT_MARKERS = ("bot", "crawler", "scraper", "curl", "wget", "spider")


def abuse_key(digest: str) -> str:
    return f"{ABUSE_KEY_PREFIX}:{digest}"


class PatternAction(str, Enum):
    WARN = "warn"
    CAPTCHA = "captcha"
    BLOCK = "block"


class AbuseStatus(str, Enum):
    NONE = "none"
    CAPTCHA = "captcha"
    BLOCKED = "blocked"

    @classmethod
    def decode(cls, raw: str | None) -> "AbuseStatus":
        """Map a stored value to a status; unknown values mean no status."""
        if raw == cls.CAPTCHA.value:
            return cls.CAPTCHA
        if raw == cls.BLOCKED.value:
            return cls.BLOCKED
        return cls.NONE


@dataclass(frozen=True)
class ClientSignals:
    """Request headers the patterns look at, supplied by the host framework."""

    user_agent: str = ""
    referer: str | None = None


@dataclass(frozen=True)
class PatternSnapshot:
    """Read-only view handed to pattern detectors."""

    request_count: int
    error_rate: float
    upload_size_bytes: int
    user_agent: str
    referer: str | None
    time_window_ms: int


@dataclass(frozen=True)
class AbusePattern:
    name: str
    detector: Callable[[PatternSnapshot], bool]
    action: PatternAction
    duration_ms: int


@dataclass(frozen=True)
class PatternMatch:
    pattern_name: str
    action: PatternAction
    duration_ms: int

    @property
    def duration_seconds(self) -> int:
        return -(-self.duration_ms // 1000)


def _is_bot_user_agent(user_agent: str) -> bool:
    lowered = user_agent.lower()
    return any(marker in lowered for marker in BOT_USER_AGENT_MARKERS)


DEFAULT_PATTERNS: tuple[AbusePattern, ...] = (
    AbusePattern(
        name="HIGH_FREQUENCY_UPLOADS",
        detector=lambda s: s.request_count > 8 and s.time_window_ms < MINUTE_MS,
        action=PatternAction.CAPTCHA,
        duration_ms=10 * MINUTE_MS,
    ),
    AbusePattern(
        name="HIGH_ERROR_RATE",
        detector=lambda s: s.request_count > 15 and s.error_rate > 0.8,
        action=PatternAction.BLOCK,
        duration_ms=30 * MINUTE_MS,
    ),
    AbusePattern(
        name="LARGE_FILE_SPAM",
        detector=lambda s: s.upload_size_bytes > 100 * MIB and s.request_count > 5,
        action=PatternAction.CAPTCHA,
        duration_ms=15 * MINUTE_MS,
    ),
    AbusePattern(
        name="BOT_USER_AGENT",
        detector=lambda s: _is_bot_user_agent(s.user_agent) and s.request_count > 10,
        action=PatternAction.BLOCK,
        duration_ms=60 * MINUTE_MS,
    ),
    AbusePattern(
        name="SUSPICIOUS_NO_REFERER",
        detector=lambda s: not s.referer and s.request_count > 50 and s.time_window_ms < 5 * MINUTE_MS,
        action=PatternAction.CAPTCHA,
        duration_ms=20 * MINUTE_MS,
    ),
)


class AbusePatternEngine:
    """Evaluates the ordered pattern table against tracked metrics."""

    def __init__(
        self,
        store: AbstractCounterStore,
        patterns: Sequence[AbusePattern] = DEFAULT_PATTERNS,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._patterns = tuple(patterns)
        self._clock = clock

    @property
    def patterns(self) -> tuple[AbusePattern, ...]:
        return self._patterns

    def snapshot(self, metrics: AbuseMetrics, context: ClientSignals) -> PatternSnapshot:
        now_ms = int(self._clock() * 1000)
        return PatternSnapshot(
            request_count=metrics.request_count,
            error_rate=metrics.error_rate,
            upload_size_bytes=metrics.upload_size_bytes,
            user_agent=context.user_agent or "",
            referer=context.referer or None,
            time_window_ms=max(0, now_ms - metrics.first_request_at),
        )

    def match(self, metrics: AbuseMetrics, context: ClientSignals) -> PatternMatch | None:
        """Return the first pattern matching the metrics, without side effects."""
        snapshot = self.snapshot(metrics, context)
        for pattern in self._patterns:
            if pattern.detector(snapshot):
                return PatternMatch(
                    pattern_name=pattern.name,
                    action=pattern.action,
                    duration_ms=pattern.duration_ms,
                )
        return None

    async def evaluate(
        self,
        digest: str,
        metrics: AbuseMetrics,
        context: ClientSignals,
    ) -> PatternMatch | None:
        """Match patterns and persist the escalation for the caller.

        Raises:
            StoreUnavailableError: If the status cannot be written.
        """
        found = self.match(metrics, context)
        if found is None:
            return None

        logger.warning(
            "abuse.pattern_detected",
            extra={
                "pattern": found.pattern_name,
                "action": found.action.value,
                "duration_ms": found.duration_ms,
                "digest": short_digest(digest),
            },
        )
        if found.action is PatternAction.WARN:
            return found

        status = AbuseStatus.BLOCKED if found.action is PatternAction.BLOCK else AbuseStatus.CAPTCHA
        await self._store.set(
            abuse_key(digest),
            status.value,
            expire_in_seconds=found.duration_seconds,
        )
        return found

    async def status(self, digest: str) -> AbuseStatus:
        return AbuseStatus.decode(await self._store.get(abuse_key(digest)))
