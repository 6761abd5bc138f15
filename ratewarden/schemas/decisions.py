"""Pydantic schemas for the decision API."""

from __future__ import annotations

from pydantic import BaseModel, Field

from ratewarden.services.rate_limit_service import Decision, DecisionOutcome


class DecisionRequest(BaseModel):
    """A request a host proxy wants admitted."""

    identifier: str = Field(
        ..., max_length=256, description="Raw caller identifier (usually the client IP)."
    )
    policy: str = Field(..., min_length=1, description="Policy name, e.g. 'UPLOAD'.")
    user_agent: str = Field("", max_length=1024, description="Caller User-Agent header.")
    referer: str | None = Field(None, max_length=2048, description="Caller Referer header.")
    response_token: str | None = Field(
        None,
        max_length=4096,
        description="Challenge token supplied by the caller, if any.",
    )


class DecisionResponse(BaseModel):
    """Admission decision for one request."""

    outcome: DecisionOutcome
    allowed: bool
    policy: str
    limit: int
    remaining: int
    reset_time: int = Field(..., description="Epoch ms when the current window ends.")
    retry_after: int | None = Field(None, description="Seconds until a retry may succeed.")
    requires_captcha: bool = False
    pattern: str | None = Field(None, description="Abuse pattern that escalated the caller.")
    degraded: bool = Field(False, description="The store was unavailable; decision failed open.")

    @classmethod
    def from_decision(cls, decision: Decision) -> "DecisionResponse":
        return cls(
            outcome=decision.outcome,
            allowed=decision.allowed,
            policy=decision.policy,
            limit=decision.limit,
            remaining=decision.remaining,
            reset_time=decision.reset_time,
            retry_after=decision.retry_after_seconds,
            requires_captcha=decision.requires_captcha,
            pattern=decision.pattern,
            degraded=decision.degraded,
        )


class OutcomeRequest(BaseModel):
    """Outcome of a request that was previously admitted."""

    identifier: str = Field(..., max_length=256)
    policy: str = Field(..., min_length=1)
    success: bool = Field(..., description="Whether the host served the request successfully.")
    upload_size_bytes: int = Field(0, ge=0, description="Bytes uploaded by the request.")


class OutcomeResponse(BaseModel):
    recorded: bool = True
