"""Pydantic schemas for the admin API."""

from __future__ import annotations

from typing import Any, Dict, List

from pydantic import BaseModel, Field

from ratewarden.services.policies import Policy
from ratewarden.services.rate_limit_service import RateLimitStatus


class ClearRateLimitRequest(BaseModel):
    identifier: str = Field(..., max_length=256, description="Raw caller identifier to reset.")


class ClearRateLimitResponse(BaseModel):
    policy: str
    cleared: bool = Field(..., description="False when the store could not be reached.")


class PolicyWindowStatusResponse(BaseModel):
    current: int
    limit: int
    reset_time: int = Field(..., description="Epoch ms when the current window ends.")


class RateLimitStatusResponse(BaseModel):
    """Diagnostic view of one caller across all policies."""

    rate_limits: Dict[str, PolicyWindowStatusResponse] = Field(default_factory=dict)
    abuse_status: str | None = Field(None, description="'captcha', 'blocked' or null.")
    metrics: Dict[str, Any] | None = None
    degraded: bool = False

    @classmethod
    def from_status(cls, status: RateLimitStatus) -> "RateLimitStatusResponse":
        return cls(
            rate_limits={
                name: PolicyWindowStatusResponse(
                    current=window.current,
                    limit=window.limit,
                    reset_time=window.reset_time,
                )
                for name, window in status.rate_limits.items()
            },
            abuse_status=status.abuse_status,
            metrics=status.metrics,
            degraded=status.degraded,
        )


class PolicyResponse(BaseModel):
    name: str
    window_ms: int
    max_requests: int
    skip_successful: bool
    skip_failed: bool

    @classmethod
    def from_policy(cls, policy: Policy) -> "PolicyResponse":
        return cls(
            name=policy.name,
            window_ms=policy.window_ms,
            max_requests=policy.max_requests,
            skip_successful=policy.skip_successful,
            skip_failed=policy.skip_failed,
        )


class PolicyListResponse(BaseModel):
    policies: List[PolicyResponse]
