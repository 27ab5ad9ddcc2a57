"""Login and token refresh endpoints.

Both are governed by the AUTH rate limit policy and record every outcome,
successful or not, in the audit trail.
"""

from __future__ import annotations

import asyncio
import logging
import re

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from ourstreet.core.audit import get_audit_recorder
from ourstreet.core.auth import get_token_service, get_user_directory
from ourstreet.core.rate_limit import apply_rate_limit_headers, rate_limited
from ourstreet.core.rate_limit_policies import AUTH
from ourstreet.core.request_meta import get_bearer_token, get_request_metadata
from ourstreet.schemas.audit import UNKNOWN_ACTOR, AuditAction, AuditResource
from ourstreet.schemas.auth import AuthResponse, LoginRequest, PublicUser
from ourstreet.services.audit_service import AuditRecorder
from ourstreet.services.token_service import TokenService
from ourstreet.services.user_directory import InMemoryUserDirectory, User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Auth"])

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

_auth_rate_limit = rate_limited(AUTH, audit_resource=AuditResource.AUTH)


def _public_user(user: User) -> PublicUser:
    return PublicUser(
        id=user.id,
        email=user.email,
        name=user.name,
        role=user.role,
        created_at=user.created_at,
    )


def _respond(request: Request, status_code: int, body: AuthResponse) -> JSONResponse:
    response = JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json", by_alias=True, exclude_none=True),
    )
    return apply_rate_limit_headers(request, response)


@router.post("/login", dependencies=[Depends(_auth_rate_limit)])
async def login(
    body: LoginRequest,
    request: Request,
    recorder: AuditRecorder = Depends(get_audit_recorder),
    users: InMemoryUserDirectory = Depends(get_user_directory),
    tokens: TokenService = Depends(get_token_service),
) -> JSONResponse:
    """Exchange email and password for a bearer token."""

    meta = get_request_metadata(request)

    async def audit_failure(reason: str, *, email: str | None, user_id: str | None = None) -> None:
        await recorder.write(
            recorder.log_auth,
            action=AuditAction.LOGIN,
            user_id=user_id,
            user_email=email or UNKNOWN_ACTOR,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
            success=False,
            error_message=reason,
        )

    if not body.email or not body.password:
        await audit_failure("Missing email or password", email=body.email)
        return _respond(
            request, 400, AuthResponse(success=False, error="Email and password are required")
        )

    if not _EMAIL_RE.match(body.email):
        await audit_failure("Invalid email format", email=body.email)
        return _respond(request, 400, AuthResponse(success=False, error="Invalid email address"))

    user = users.find_by_email(body.email)
    if user is None:
        await audit_failure("User not found", email=body.email)
        return _respond(
            request, 401, AuthResponse(success=False, error="Invalid email or password")
        )

    # bcrypt verification is CPU bound
    loop = asyncio.get_running_loop()
    if not await loop.run_in_executor(None, users.authenticate, user, body.password):
        await audit_failure("Invalid password", email=user.email, user_id=user.id)
        return _respond(
            request, 401, AuthResponse(success=False, error="Invalid email or password")
        )

    token = tokens.issue(user.id, user.email, user.role)
    await recorder.write(
        recorder.log_auth,
        action=AuditAction.LOGIN,
        user_id=user.id,
        user_email=user.email,
        ip_address=meta.ip_address,
        user_agent=meta.user_agent,
        success=True,
    )
    logger.info("auth.login_succeeded", extra={"user_id": user.id, "role": user.role})

    return _respond(
        request,
        200,
        AuthResponse(
            success=True,
            message="Login successful",
            user=_public_user(user),
            token=token,
        ),
    )


@router.post("/refresh", dependencies=[Depends(_auth_rate_limit)])
async def refresh(
    request: Request,
    recorder: AuditRecorder = Depends(get_audit_recorder),
    users: InMemoryUserDirectory = Depends(get_user_directory),
    tokens: TokenService = Depends(get_token_service),
) -> JSONResponse:
    """Mint a fresh token for a still-valid one.

    The new token always carries the user's current role; a role that changed
    since the old token was issued is recorded as a successful
    ``role_change`` event.
    """

    meta = get_request_metadata(request)
    token = get_bearer_token(request.headers) or request.cookies.get("token")

    async def audit_failure(reason: str, *, email: str = UNKNOWN_ACTOR, user_id: str | None = None) -> None:
        await recorder.write(
            recorder.log_auth,
            action=AuditAction.TOKEN_REFRESH,
            user_id=user_id,
            user_email=email,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
            success=False,
            error_message=reason,
        )

    if not token:
        await audit_failure("No token provided for refresh")
        return _respond(request, 401, AuthResponse(success=False, error="No token provided"))

    claims = tokens.verify(token)
    if claims is None:
        await audit_failure("Invalid or expired token for refresh")
        return _respond(
            request, 401, AuthResponse(success=False, error="Invalid or expired token")
        )

    user = users.find_by_id(claims.user_id)
    if user is None:
        await audit_failure(
            "User not found during token refresh",
            email=claims.email,
            user_id=claims.user_id,
        )
        return _respond(request, 401, AuthResponse(success=False, error="User not found"))

    if user.role != claims.role:
        await recorder.write(
            recorder.record,
            action=AuditAction.ROLE_CHANGE,
            resource=AuditResource.AUTH,
            success=True,
            user_id=user.id,
            user_email=user.email,
            user_role=user.role,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
            details={"previousRole": claims.role, "newRole": user.role, "via": "token_refresh"},
        )
        logger.info(
            "auth.role_changed_on_refresh",
            extra={"user_id": user.id, "previous_role": claims.role, "new_role": user.role},
        )

    new_token = tokens.issue(user.id, user.email, user.role)
    await recorder.write(
        recorder.log_auth,
        action=AuditAction.TOKEN_REFRESH,
        user_id=user.id,
        user_email=user.email,
        ip_address=meta.ip_address,
        user_agent=meta.user_agent,
        success=True,
    )

    return _respond(
        request,
        200,
        AuthResponse(
            success=True,
            message="Token refreshed successfully",
            token=new_token,
            user=_public_user(user),
        ),
    )
