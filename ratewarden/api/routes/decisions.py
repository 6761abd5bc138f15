"""Decision API for out-of-process hosts (edge proxies, gateways).

The host forwards the caller's identifier and headers, acts on the returned
decision, and reports the outcome once the request has been served. Outcome
reports move window counters and abuse metrics, so both routes require an
API key.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from ratewarden.core.auth import verify_api_key
from ratewarden.core.rate_limit import get_rate_limit_service
from ratewarden.schemas.decisions import (
    DecisionRequest,
    DecisionResponse,
    OutcomeRequest,
    OutcomeResponse,
)
from ratewarden.services.rate_limit_service import RateLimitService, RequestContext

router = APIRouter(
    tags=["Decisions"],
    dependencies=[Depends(verify_api_key)],
)

ServiceDep = Annotated[RateLimitService, Depends(get_rate_limit_service)]


@router.post("/decisions", response_model=DecisionResponse)
async def create_decision(payload: DecisionRequest, service: ServiceDep) -> DecisionResponse:
    """Decide whether a request may proceed.

    Always answers 200 with the decision; the host maps the outcome to its
    own response (429 for ``rate_limited``/``blocked``, 403 for the captcha
    outcomes). Unknown policies are rejected with 400.
    """
    decision = await service.evaluate(
        RequestContext(
            identifier=payload.identifier,
            policy_name=payload.policy,
            user_agent=payload.user_agent,
            referer=payload.referer,
            response_token=payload.response_token,
        )
    )
    return DecisionResponse.from_decision(decision)


@router.post("/decisions/outcome", response_model=OutcomeResponse)
async def record_outcome(payload: OutcomeRequest, service: ServiceDep) -> OutcomeResponse:
    """Record how an admitted request ended (feeds abuse detection)."""
    await service.record_request(
        payload.policy,
        payload.identifier,
        success=payload.success,
        upload_size_bytes=payload.upload_size_bytes,
    )
    return OutcomeResponse()
