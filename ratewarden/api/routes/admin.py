from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from ratewarden.core.auth import verify_api_key
from ratewarden.core.rate_limit import get_rate_limit_service
from ratewarden.schemas.admin import (
    ClearRateLimitRequest,
    ClearRateLimitResponse,
    PolicyListResponse,
    PolicyResponse,
    RateLimitStatusResponse,
)
from ratewarden.services.rate_limit_service import RateLimitService

router = APIRouter(
    prefix="/admin",
    tags=["Admin"],
    dependencies=[Depends(verify_api_key)],
)

ServiceDep = Annotated[RateLimitService, Depends(get_rate_limit_service)]


@router.post("/rate-limits/{policy}/clear", response_model=ClearRateLimitResponse)
async def clear_rate_limit(
    policy: str,
    payload: ClearRateLimitRequest,
    service: ServiceDep,
) -> ClearRateLimitResponse:
    """Reset a caller's current window, abuse status and metrics."""
    cleared = await service.clear_rate_limit(policy, payload.identifier)
    return ClearRateLimitResponse(policy=policy, cleared=cleared)


@router.get("/rate-limits/status", response_model=RateLimitStatusResponse)
async def rate_limit_status(
    service: ServiceDep,
    identifier: Annotated[str, Query(max_length=256)],
) -> RateLimitStatusResponse:
    status = await service.get_status(identifier)
    return RateLimitStatusResponse.from_status(status)


@router.get("/policies", response_model=PolicyListResponse)
async def list_policies(service: ServiceDep) -> PolicyListResponse:
    return PolicyListResponse(
        policies=[PolicyResponse.from_policy(policy) for policy in service.registry]
    )
