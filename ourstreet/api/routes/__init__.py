from __future__ import annotations

from ourstreet.api.routes.audit_logs import router as audit_logs_router
from ourstreet.api.routes.auth import router as auth_router
from ourstreet.api.routes.health import router as health_router

__all__ = ["audit_logs_router", "auth_router", "health_router"]
