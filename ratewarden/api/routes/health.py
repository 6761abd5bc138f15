from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ratewarden.core.rate_limit import get_rate_limit_service
from ratewarden.services.rate_limit_service import RateLimitService

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> dict:
    """Liveness check.

    Returns:
        dict: A dictionary with a single "status" key set to "ok".
    """

    return {"status": "ok"}


@router.get("/health/ready")
async def readiness_check(
    service: Annotated[RateLimitService, Depends(get_rate_limit_service)],
) -> JSONResponse:
    """Readiness check: the shared counter store must answer a ping.

    The service keeps admitting requests (fail open) while the store is down,
    so this endpoint is what tells the orchestrator something is wrong.
    """

    if await service.ping():
        return JSONResponse({"status": "ok", "store": "ok"})
    return JSONResponse({"status": "degraded", "store": "unavailable"}, status_code=503)
