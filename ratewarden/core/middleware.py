"""HTTP middleware for request ID propagation and access logging.

Every request/response pair carries a correlation ID (``LOG_REQUEST_ID_HEADER``,
``X-Request-ID`` by default): the incoming value is reused when present,
otherwise a UUID is generated. The ID lives in contextvars for the duration of
the request so that decision logs emitted deep inside the services carry it.

Usage:
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import logging
import time
import uuid

from fastapi import Request, Response

from ratewarden.core.config import settings
from ratewarden.core.logging import clear_request_id, set_request_id

logger = logging.getLogger(__name__)

# Longest client-supplied request id that is echoed back
MAX_REQUEST_ID_LENGTH = 128


def _incoming_request_id(request: Request, header_name: str) -> str:
    value = (request.headers.get(header_name) or "").strip()
    if not value or len(value) > MAX_REQUEST_ID_LENGTH:
        return str(uuid.uuid4())
    return value


async def request_id_middleware(request: Request, call_next) -> Response:
    """Attach a correlation ID and timing headers to each request.

    Side Effects:
        - Sets request_id in contextvars (accessible via get_request_id())
        - Logs one ``http.request`` line per request (no caller address)
        - Adds the request id and X-Request-Duration-ms response headers
        - Clears request_id from contextvars after the request completes
    """

    header_name = settings.log.request_id_header
    request_id = _incoming_request_id(request, header_name)
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "http.request",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round(duration_ms, 2),
            },
        )
    finally:
        clear_request_id()

    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
    return response
