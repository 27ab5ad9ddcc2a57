"""Application factory for FastAPI app.

Centralizes app construction (metadata, lifespan, middleware, handlers,
routers) to improve testability and separation of concerns.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from ourstreet.api.routes import audit_logs_router, auth_router, health_router
from ourstreet.core.config import settings
from ourstreet.core.exception_handlers import setup_exception_handlers
from ourstreet.core.logging import configure_logging
from ourstreet.core.middleware import request_id_middleware
from ourstreet.core.openapi import apply_openapi_customizations
from ourstreet.core.rate_limit import get_rate_limiter


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Run the rate limit sweep for as long as the app is serving."""

    limiter = get_rate_limiter()
    limiter.start(settings.rate_limit.sweep_interval_seconds)
    try:
        yield
    finally:
        await limiter.stop()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="OurStreet API",
        description=(
            "Request-rate governance and security audit trail for the OurStreet "
            "civic issue reporting platform: per-client, per-route rate limits, "
            "authentication endpoints, and an admin-only audit log query and "
            "export surface."
        ),
        version="0.1.0",
        lifespan=lifespan,
        license_info={
            "name": "MIT License",
            "url": "https://opensource.org/licenses/MIT",
        },
    )

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(auth_router)
    app.include_router(audit_logs_router)
    app.include_router(health_router)

    # OpenAPI customizations (security scheme, tags, exemptions)
    apply_openapi_customizations(app)

    return app
