"""Rate limiting service orchestrating admission, abuse detection and challenges.

This service is the core business logic that turns a caller identifier and a
policy name into an admission decision. It handles:
- Abuse-pattern evaluation over tracked metrics (escalation to captcha/block)
- Fixed-window admission against the policy ceiling
- Challenge verification for escalated callers
- Administrative reset and status inspection

Degradation policy: store failures during admission fail open (logged, the
request is allowed) while challenge verification fails closed. No transient
backend error crosses the public API; only decisions do.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from ratewarden.adapters.store.base import AbstractCounterStore
from ratewarden.core.errors import StoreUnavailableError
from ratewarden.core.identity import IdentityHasher
from ratewarden.core.logging import short_digest
from ratewarden.services.challenge import ChallengeVerifier
from ratewarden.services.metrics import AbuseMetricsTracker, DecodeState, metrics_key
from ratewarden.services.patterns import (
    AbusePatternEngine,
    AbuseStatus,
    ClientSignals,
    PatternAction,
    abuse_key,
)
from ratewarden.services.policies import Policy, PolicyRegistry
from ratewarden.services.window_counter import WindowCounterStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a windowed admission check.

    Attributes:
        allowed: Whether the request is admitted by the policy window.
        remaining: Requests left in the current window (0 when exhausted).
        reset_time: Epoch milliseconds when the current window ends.
        requires_captcha: Caller is escalated and must pass a challenge.
        count: Requests counted in the current window.
        limit: The policy ceiling.
        blocked: Caller is blocked by an abuse pattern.
        degraded: The store failed and the result is a fail-open estimate.
    """

    allowed: bool
    remaining: int
    reset_time: int
    requires_captcha: bool
    count: int
    limit: int
    blocked: bool = False
    degraded: bool = False


class AbuseAction(str, Enum):
    ALLOW = "allow"
    CAPTCHA = "captcha"
    BLOCK = "block"


@dataclass(frozen=True)
class AbuseCheckResult:
    action: AbuseAction
    pattern: str | None = None
    duration_ms: int | None = None

    @property
    def retry_after_seconds(self) -> int | None:
        if self.duration_ms is None:
            return None
        return math.ceil(self.duration_ms / 1000)


class DecisionOutcome(str, Enum):
    ALLOWED = "allowed"
    RATE_LIMITED = "rate_limited"
    BLOCKED = "blocked"
    CAPTCHA_REQUIRED = "captcha_required"
    CAPTCHA_INVALID = "captcha_invalid"


@dataclass(frozen=True)
class RequestContext:
    """Everything a host framework knows about a request to be admitted."""

    identifier: str
    policy_name: str
    user_agent: str = ""
    referer: str | None = None
    response_token: str | None = None


@dataclass(frozen=True)
class Decision:
    """Framework-agnostic admission decision."""

    outcome: DecisionOutcome
    policy: str
    limit: int
    remaining: int
    reset_time: int
    retry_after_seconds: int | None = None
    requires_captcha: bool = False
    pattern: str | None = None
    degraded: bool = False

    @property
    def allowed(self) -> bool:
        return self.outcome is DecisionOutcome.ALLOWED


@dataclass(frozen=True)
class PolicyWindowStatus:
    current: int
    limit: int
    reset_time: int


@dataclass(frozen=True)
class RateLimitStatus:
    """Read-only diagnostic view of one caller across all policies."""

    rate_limits: dict[str, PolicyWindowStatus] = field(default_factory=dict)
    abuse_status: str | None = None
    metrics: dict[str, Any] | None = None
    degraded: bool = False


class RateLimitService:
    """Composes hashing, counters, metrics, patterns and challenges.

    Attributes:
        registry: Admission policies by name.
        hasher: Identifier digest function.
    """

    def __init__(
        self,
        store: AbstractCounterStore,
        registry: PolicyRegistry,
        hasher: IdentityHasher,
        verifier: ChallengeVerifier,
        *,
        windows: WindowCounterStore | None = None,
        tracker: AbuseMetricsTracker | None = None,
        engine: AbusePatternEngine | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the service with its collaborators.

        Args:
            store: Shared counter store.
            registry: Validated policy registry.
            hasher: Identity hasher (salted).
            verifier: Challenge verifier.
            windows: Optional window counter store (built from ``store``).
            tracker: Optional metrics tracker (built from ``store``).
            engine: Optional pattern engine (built from ``store``).
            clock: Time source function returning UNIX time in seconds.
        """
        self.registry = registry
        self.hasher = hasher
        self._store = store
        self._verifier = verifier
        self._clock = clock
        self._windows = windows or WindowCounterStore(store, clock=clock)
        self._tracker = tracker or AbuseMetricsTracker(store, clock=clock)
        self._engine = engine or AbusePatternEngine(store, clock=clock)

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _seconds_until(self, epoch_ms: int) -> int:
        return max(0, math.ceil((epoch_ms - self._now_ms()) / 1000))

    def _fail_open(self, policy: Policy) -> RateLimitResult:
        index = self._now_ms() // policy.window_ms
        return RateLimitResult(
            allowed=True,
            remaining=policy.max_requests - 1,
            reset_time=(index + 1) * policy.window_ms,
            requires_captcha=False,
            count=1,
            limit=policy.max_requests,
            degraded=True,
        )

    async def check_and_increment(self, policy_name: str, identifier: str) -> RateLimitResult:
        """Count one request against ``policy_name`` and decide admission.

        A blocked caller is denied without touching the window counter.
        Store failures fail open.

        Raises:
            ValidationAppError: If the policy name is unknown.
        """
        policy = self.registry.get(policy_name)
        digest = self.hasher.hash(identifier)

        try:
            status = await self._engine.status(digest)
            if status is AbuseStatus.BLOCKED:
                index = self._now_ms() // policy.window_ms
                logger.info(
                    "rate_limit.blocked",
                    extra={"policy": policy.name, "digest": short_digest(digest)},
                )
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    reset_time=(index + 1) * policy.window_ms,
                    requires_captcha=False,
                    count=policy.max_requests,
                    limit=policy.max_requests,
                    blocked=True,
                )

            window = await self._windows.increment_and_get(policy, digest)
        except StoreUnavailableError as exc:
            logger.error(
                "rate_limit.store_unavailable",
                extra={
                    "policy": policy.name,
                    "error_code": exc.code,
                    "error_msg": exc.message,
                    "fail_open": True,
                },
            )
            return self._fail_open(policy)

        allowed = window.count <= policy.max_requests
        result = RateLimitResult(
            allowed=allowed,
            remaining=max(0, policy.max_requests - window.count),
            reset_time=window.reset_time_ms,
            requires_captcha=status is AbuseStatus.CAPTCHA,
            count=window.count,
            limit=policy.max_requests,
        )
        if not allowed:
            logger.warning(
                "rate_limit.exceeded",
                extra={
                    "policy": policy.name,
                    "count": window.count,
                    "limit": policy.max_requests,
                    "digest": short_digest(digest),
                },
            )
        return result

    async def check_abuse_patterns(
        self,
        identifier: str,
        user_agent: str = "",
        referer: str | None = None,
    ) -> AbuseCheckResult:
        """Evaluate abuse patterns for the caller and escalate on a match.

        Missing or corrupted metrics and store failures all yield ``allow``.
        """
        digest = self.hasher.hash(identifier)
        try:
            decoded = await self._tracker.load(digest)
            if decoded.metrics is None:
                return AbuseCheckResult(AbuseAction.ALLOW)
            found = await self._engine.evaluate(
                digest,
                decoded.metrics,
                ClientSignals(user_agent=user_agent, referer=referer),
            )
        except StoreUnavailableError as exc:
            logger.error(
                "abuse.check_failed",
                extra={"error_code": exc.code, "error_msg": exc.message, "fail_open": True},
            )
            return AbuseCheckResult(AbuseAction.ALLOW)

        if found is None:
            return AbuseCheckResult(AbuseAction.ALLOW)

        action = {
            PatternAction.WARN: AbuseAction.ALLOW,
            PatternAction.CAPTCHA: AbuseAction.CAPTCHA,
            PatternAction.BLOCK: AbuseAction.BLOCK,
        }[found.action]
        return AbuseCheckResult(action, pattern=found.pattern_name, duration_ms=found.duration_ms)

    async def record_request(
        self,
        policy_name: str,
        identifier: str,
        success: bool,
        upload_size_bytes: int = 0,
    ) -> None:
        """Record a request outcome for abuse tracking.

        When the policy skips this outcome, the window slot the request
        consumed is released. Store failures are logged and absorbed.

        Raises:
            ValidationAppError: If the policy name is unknown.
        """
        policy = self.registry.get(policy_name)
        digest = self.hasher.hash(identifier)
        try:
            await self._tracker.record(digest, success, upload_size_bytes)
            if policy.skips(success):
                await self._windows.release(policy, digest)
        except StoreUnavailableError as exc:
            logger.error(
                "metrics.record_failed",
                extra={"policy": policy.name, "error_code": exc.code, "error_msg": exc.message},
            )

    async def verify_challenge(self, token: str | None, identifier: str) -> bool:
        return await self._verifier.verify(token, identifier)

    async def _blocked_retry_after(self, digest: str, fallback: int) -> int:
        try:
            remaining = await self._store.ttl(abuse_key(digest))
        except StoreUnavailableError:
            return fallback
        return remaining if remaining is not None else fallback

    async def evaluate(self, context: RequestContext) -> Decision:
        """Run the full admission flow for one request.

        Order: abuse patterns, windowed admission, then challenge
        verification when the caller is escalated.

        Raises:
            ValidationAppError: If the policy name is unknown.
        """
        policy = self.registry.get(context.policy_name)
        abuse = await self.check_abuse_patterns(
            context.identifier, context.user_agent, context.referer
        )

        if abuse.action is AbuseAction.BLOCK:
            return Decision(
                outcome=DecisionOutcome.BLOCKED,
                policy=policy.name,
                limit=policy.max_requests,
                remaining=0,
                reset_time=self._now_ms() + (abuse.duration_ms or 0),
                retry_after_seconds=abuse.retry_after_seconds,
                pattern=abuse.pattern,
            )

        result = await self.check_and_increment(policy.name, context.identifier)

        if result.blocked:
            fallback = self._seconds_until(result.reset_time)
            retry_after = await self._blocked_retry_after(
                self.hasher.hash(context.identifier), fallback
            )
            return Decision(
                outcome=DecisionOutcome.BLOCKED,
                policy=policy.name,
                limit=result.limit,
                remaining=0,
                reset_time=result.reset_time,
                retry_after_seconds=retry_after,
            )

        if not result.allowed:
            return Decision(
                outcome=DecisionOutcome.RATE_LIMITED,
                policy=policy.name,
                limit=result.limit,
                remaining=result.remaining,
                reset_time=result.reset_time,
                retry_after_seconds=self._seconds_until(result.reset_time),
            )

        if result.requires_captcha or abuse.action is AbuseAction.CAPTCHA:
            if not context.response_token:
                outcome = DecisionOutcome.CAPTCHA_REQUIRED
            elif await self.verify_challenge(context.response_token, context.identifier):
                outcome = DecisionOutcome.ALLOWED
            else:
                outcome = DecisionOutcome.CAPTCHA_INVALID

            if outcome is not DecisionOutcome.ALLOWED:
                return Decision(
                    outcome=outcome,
                    policy=policy.name,
                    limit=result.limit,
                    remaining=result.remaining,
                    reset_time=result.reset_time,
                    requires_captcha=True,
                    pattern=abuse.pattern,
                )

        return Decision(
            outcome=DecisionOutcome.ALLOWED,
            policy=policy.name,
            limit=result.limit,
            remaining=result.remaining,
            reset_time=result.reset_time,
            degraded=result.degraded,
        )

    async def clear_rate_limit(self, policy_name: str, identifier: str) -> bool:
        """Delete the current window counter, abuse status and metrics.

        Returns:
            bool: False when the store could not be reached.

        Raises:
            ValidationAppError: If the policy name is unknown.
        """
        policy = self.registry.get(policy_name)
        digest = self.hasher.hash(identifier)
        keys = [
            self._windows.key_for(policy, digest),
            abuse_key(digest),
            metrics_key(digest),
        ]
        try:
            removed = await self._store.delete_many(keys)
        except StoreUnavailableError as exc:
            logger.error(
                "admin.clear_failed",
                extra={"policy": policy.name, "error_code": exc.code, "digest": short_digest(digest)},
            )
            return False

        logger.info(
            "admin.rate_limit_cleared",
            extra={"policy": policy.name, "keys_removed": removed, "digest": short_digest(digest)},
        )
        return True

    async def get_status(self, identifier: str) -> RateLimitStatus:
        """Collect a diagnostic view of the caller across all policies.

        Store failures stop the collection and mark the view ``degraded``;
        whatever was read before the failure is returned.
        """
        digest = self.hasher.hash(identifier)
        rate_limits: dict[str, PolicyWindowStatus] = {}
        abuse_status: str | None = None
        metrics: dict[str, Any] | None = None

        try:
            for policy in self.registry:
                window = await self._windows.current(policy, digest)
                rate_limits[policy.name] = PolicyWindowStatus(
                    current=window.count,
                    limit=policy.max_requests,
                    reset_time=window.reset_time_ms,
                )

            status = await self._engine.status(digest)
            abuse_status = None if status is AbuseStatus.NONE else status.value

            decoded = await self._tracker.load(digest)
            if decoded.state is DecodeState.OK and decoded.metrics is not None:
                metrics = decoded.metrics.model_dump()
        except StoreUnavailableError as exc:
            logger.error(
                "admin.status_failed",
                extra={"error_code": exc.code, "digest": short_digest(digest)},
            )
            return RateLimitStatus(rate_limits, abuse_status, metrics, degraded=True)

        return RateLimitStatus(rate_limits, abuse_status, metrics)

    async def ping(self) -> bool:
        return await self._store.ping()

    async def close(self) -> None:
        """Release the store connection and the challenge client."""
        await self._verifier.close()
        await self._store.close()
