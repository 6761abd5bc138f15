"""Rate limiting dependency for FastAPI routes.

This module wires the rate limiting service into the HTTP layer.

Design goals:
- Minimal coupling: API routes depend on a dependency function only.
- Swap-friendly: the counter store (Redis or in-memory) sits behind an
  abstract interface and is chosen by settings.
- Decisions become domain errors; the global exception handlers render
  them as 429/403 responses with rate limit headers.

Per request the dependency resolves the caller address, runs the service's
admission flow, and after the endpoint returns records the outcome (success
unless the endpoint raised) so that abuse heuristics and skip rules apply.
"""

from __future__ import annotations

import logging
import math
from typing import AsyncIterator, Callable

from fastapi import Request

from ratewarden.adapters.challenge.factory import create_challenge_client
from ratewarden.adapters.store.factory import create_counter_store
from ratewarden.core.config import Settings, settings
from ratewarden.core.errors import (
    AccessBlockedError,
    AppError,
    CaptchaRequiredError,
    RateLimitExceededError,
)
from ratewarden.core.identity import IdentityHasher, get_client_ip
from ratewarden.services.challenge import ChallengeVerifier
from ratewarden.services.policies import PolicyRegistry
from ratewarden.services.rate_limit_service import (
    Decision,
    DecisionOutcome,
    RateLimitService,
    RequestContext,
)

logger = logging.getLogger(__name__)

_FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")

_service: RateLimitService | None = None


def build_rate_limit_service(app_settings: Settings | None = None) -> RateLimitService:
    """Assemble the service from configuration.

    Raises:
        ConfigurationAppError: If a policy, store or provider is misconfigured.
    """
    cfg = app_settings or settings
    store = create_counter_store(cfg.store)
    registry = PolicyRegistry.with_overrides(cfg.app.policy_overrides)
    hasher = IdentityHasher(cfg.security.identity_salt.get_secret_value())
    verifier = ChallengeVerifier(create_challenge_client(cfg.challenge), store, hasher)

    logger.info(
        "rate_limit.service_built",
        extra={
            "store_backend": cfg.store.backend,
            "challenge_provider": cfg.challenge.provider,
            "policies": registry.names(),
        },
    )
    return RateLimitService(store, registry, hasher, verifier)


def get_rate_limit_service() -> RateLimitService:
    """Return the process-wide rate limiting service.

    The instance is cached in-module; the app lifespan builds it at startup so
    configuration errors surface before the first request.
    """

    global _service
    if _service is None:
        _service = build_rate_limit_service()
    return _service


def set_rate_limit_service(service: RateLimitService | None) -> None:
    """Replace (or drop, with None) the cached service instance."""

    global _service
    _service = service


async def _read_challenge_token(request: Request) -> str | None:
    """Read the challenge token from the configured header or form field."""

    token = request.headers.get(settings.challenge.token_header)
    if token:
        return token

    content_type = request.headers.get("content-type", "")
    if content_type.startswith(_FORM_CONTENT_TYPES):
        form = await request.form()
        value = form.get(settings.challenge.token_field)
        if isinstance(value, str) and value:
            return value
    return None


def _content_length(request: Request) -> int:
    try:
        return max(0, int(request.headers.get("content-length", "0")))
    except ValueError:
        return 0


def decision_error(decision: Decision) -> AppError:
    """Translate a denied decision into the domain error the handlers render."""

    reset_at = math.ceil(decision.reset_time / 1000)

    if decision.outcome is DecisionOutcome.RATE_LIMITED:
        return RateLimitExceededError(
            code="rate_limit_exceeded",
            message="Too many requests. Please try again later.",
            details={
                "policy": decision.policy,
                "limit": decision.limit,
                "remaining": decision.remaining,
                "reset_at": reset_at,
                "retry_after": decision.retry_after_seconds or 0,
            },
        )

    if decision.outcome is DecisionOutcome.BLOCKED:
        details = {
            "policy": decision.policy,
            "limit": decision.limit,
            "remaining": 0,
            "reset_at": reset_at,
            "retry_after": decision.retry_after_seconds or 0,
        }
        if decision.pattern:
            details["pattern"] = decision.pattern
        return AccessBlockedError(
            code="access_blocked",
            message="Access temporarily blocked due to suspicious activity.",
            details=details,
        )

    if decision.outcome is DecisionOutcome.CAPTCHA_INVALID:
        return CaptchaRequiredError(
            code="captcha_invalid",
            message="Captcha verification failed. Please try again.",
            details={"policy": decision.policy, "requires_captcha": True},
        )

    return CaptchaRequiredError(
        code="captcha_required",
        message="Please complete the captcha verification.",
        details={"policy": decision.policy, "requires_captcha": True},
    )


def enforce_policy(policy_name: str) -> Callable[[Request], AsyncIterator[Decision | None]]:
    """Build a FastAPI dependency that enforces ``policy_name``.

    Usage:
        @router.post("/upload", dependencies=[Depends(enforce_policy("UPLOAD"))])
        async def upload(): ...

    The dependency yields the admission decision (None when rate limiting
    is disabled) and records the request outcome after the endpoint ran.

    Raises:
        RateLimitExceededError: 429 when the policy window is exhausted.
        AccessBlockedError: 429 when an abuse pattern blocked the caller.
        CaptchaRequiredError: 403 when a valid challenge token is needed.
    """

    async def dependency(request: Request) -> AsyncIterator[Decision | None]:
        if not settings.app.rate_limit_enabled:
            yield None
            return

        service = get_rate_limit_service()
        identifier = get_client_ip(
            request, trust_proxy_headers=settings.security.trust_proxy_headers
        )
        context = RequestContext(
            identifier=identifier,
            policy_name=policy_name,
            user_agent=request.headers.get("user-agent", ""),
            referer=request.headers.get("referer"),
            response_token=await _read_challenge_token(request),
        )

        decision = await service.evaluate(context)
        if not decision.allowed:
            raise decision_error(decision)

        success = True
        try:
            yield decision
        except Exception:
            success = False
            raise
        finally:
            await service.record_request(
                policy_name,
                identifier,
                success=success,
                upload_size_bytes=_content_length(request),
            )

    dependency.__name__ = f"enforce_policy_{policy_name.lower()}"
    return dependency


async def close_rate_limit_service() -> None:
    """Close and drop the cached service (app shutdown)."""

    global _service
    if _service is not None:
        await _service.close()
        _service = None
