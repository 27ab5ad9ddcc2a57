"""Bearer token authentication and admin authorization.

Design principles:
- Dependency Injection: used via FastAPI Depends() for loose coupling
- Every rejected admin access is recorded as an ``unauthorized_access``
  security event before the error is raised
- No bypass: the admin surface always requires a valid token with the
  ``admin`` role
"""

from __future__ import annotations

import logging

from fastapi import Depends, Request

from ourstreet.core.audit import get_audit_recorder
from ourstreet.core.config import settings
from ourstreet.core.errors import AuthenticationAppError, AuthorizationAppError
from ourstreet.core.request_meta import get_bearer_token, get_request_metadata
from ourstreet.schemas.audit import AuditAction, AuditResource
from ourstreet.schemas.auth import TokenClaims
from ourstreet.services.audit_service import AuditRecorder
from ourstreet.services.token_service import TokenService
from ourstreet.services.user_directory import InMemoryUserDirectory

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"

_token_service: TokenService | None = None
_token_config: tuple[str, str, int] | None = None
_user_directory: InMemoryUserDirectory | None = None


def get_token_service() -> TokenService:
    """Return a process-wide token service, rebuilt if auth settings change."""

    global _token_service, _token_config

    cfg = settings.auth
    config = (cfg.jwt_secret, cfg.jwt_algorithm, cfg.token_expires_minutes)
    if _token_service is None or _token_config != config:
        _token_service = TokenService.from_settings(cfg)
        _token_config = config
    return _token_service


def get_user_directory() -> InMemoryUserDirectory:
    global _user_directory

    if _user_directory is None:
        _user_directory = InMemoryUserDirectory()
    return _user_directory


async def require_admin(
    request: Request,
    token_service: TokenService = Depends(get_token_service),
    recorder: AuditRecorder = Depends(get_audit_recorder),
) -> TokenClaims:
    """FastAPI dependency admitting only callers holding a valid admin token.

    Usage:
        @router.get("/admin/thing")
        async def thing(admin: TokenClaims = Depends(require_admin)): ...

    Raises:
        AuthenticationAppError: 401 when the token is missing, invalid or expired.
        AuthorizationAppError: 403 when the token is valid but not an admin's.
    """

    meta = get_request_metadata(request)
    token = get_bearer_token(request.headers)
    claims = token_service.verify(token) if token else None

    if claims is None:
        reason = "Missing bearer token" if token is None else "Invalid or expired token"
        logger.warning(
            "auth.admin_rejected",
            extra={"reason": reason, "path": request.url.path},
        )
        await recorder.write(
            recorder.log_security_event,
            action=AuditAction.UNAUTHORIZED_ACCESS,
            resource=AuditResource.ADMIN,
            error_message=reason,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
            details={"path": request.url.path},
        )
        raise AuthenticationAppError(
            code="unauthorized",
            message="Unauthorized: a valid bearer token is required",
        )

    if claims.role != ADMIN_ROLE:
        logger.warning(
            "auth.admin_rejected",
            extra={"reason": "insufficient_role", "user_id": claims.user_id, "path": request.url.path},
        )
        await recorder.write(
            recorder.log_security_event,
            action=AuditAction.UNAUTHORIZED_ACCESS,
            resource=AuditResource.ADMIN,
            error_message="Admin role required",
            user_id=claims.user_id,
            user_email=claims.email,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
            details={"path": request.url.path, "role": claims.role},
        )
        raise AuthorizationAppError(
            code="forbidden",
            message="Forbidden: admin access required",
        )

    return claims
