"""HTTP middleware for request correlation and access logging.

Every request gets a correlation id: the incoming ``X-Request-ID`` (header
name configurable) or a fresh UUID. It lives in a context variable for the
duration of the request, so rate limit and audit log lines carry it, and it
is echoed back on the response together with the request duration.

Usage:
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import logging
import time
import uuid

from fastapi import Request, Response

from ourstreet.core.config import settings
from ourstreet.core.logging import clear_request_id, set_request_id

logger = logging.getLogger("ourstreet.access")


async def request_id_middleware(request: Request, call_next) -> Response:
    """Attach a correlation id to the request context and the response."""

    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000
        # Query strings are left out: audit filters may carry user emails
        logger.info(
            "http.request_completed",
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
