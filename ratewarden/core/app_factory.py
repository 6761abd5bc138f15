from __future__ import annotations

"""Application factory for FastAPI app.

Centralizes app construction (metadata, lifespan, middleware, handlers,
routers) to improve testability compared to a monolithic main.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from ratewarden.api.routes import admin_router, decisions_router, health_router
from ratewarden.core.config import settings
from ratewarden.core.exception_handlers import setup_exception_handlers
from ratewarden.core.logging import configure_logging
from ratewarden.core.middleware import request_id_middleware
from ratewarden.core.openapi import apply_openapi_customizations
from ratewarden.core.rate_limit import close_rate_limit_service, get_rate_limit_service

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the rate limiting service on startup and release it on shutdown.

    Building at startup validates the policy table, store backend and
    challenge provider, so a misconfiguration aborts startup with a
    ConfigurationAppError. An unreachable store does not: admission fails
    open and /health/ready reports it.
    """
    service = get_rate_limit_service()
    store_ready = await service.ping()
    logger.info(
        "application_startup",
        extra={
            "env": settings.app_env,
            "store_backend": settings.store.backend,
            "store_ready": store_ready,
        },
    )

    yield

    await close_rate_limit_service()
    logger.info("application_shutdown", extra={"env": settings.app_env})


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Ratewarden",
        description=(
            "Rate limiting and abuse detection service. Enforces fixed-window "
            "admission policies per caller, escalates suspicious callers to a "
            "captcha challenge or a temporary block, and exposes admin "
            "endpoints to inspect and reset caller state."
        ),
        version="0.1.0",
        license_info={
            "name": "MIT License",
            "url": "https://opensource.org/licenses/MIT",
        },
        lifespan=lifespan,
    )

    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(decisions_router, prefix="/v1")
    app.include_router(admin_router, prefix="/v1")
    app.include_router(health_router)

    apply_openapi_customizations(app)

    return app
