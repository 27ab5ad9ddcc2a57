"""Rate limiting dependency for FastAPI routes.

This module wires the rate limiting adapter into the HTTP layer.

Design goals:
- Minimal coupling: API routes depend on a dependency factory only.
- Swap-friendly: storage backend can be replaced (e.g., Redis) behind an
  abstract interface.
- Per endpoint class: each route declares the policy it is governed by.

Rate limiting strategy:
- Fixed window per (client identity, route path).
- Identity is the first 20 characters of a bearer token when present,
  otherwise the forwarded client IP. Tokens are not verified here.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Awaitable, Callable, Mapping

from fastapi import Depends, Request, Response

from ourstreet.adapters.rate_limit.base import (
    RateLimitDecision,
    RateLimitInfo,
    RateLimitPolicy,
)
from ourstreet.adapters.rate_limit.in_memory import InMemoryFixedWindowRateLimiter
from ourstreet.core.audit import get_audit_recorder
from ourstreet.core.config import settings
from ourstreet.core.errors import RateLimitExceededError
from ourstreet.core.rate_limit_policies import DEFAULT
from ourstreet.core.request_meta import derive_client_identity, get_request_metadata
from ourstreet.schemas.audit import AuditAction, AuditResource
from ourstreet.services.audit_service import AuditRecorder

logger = logging.getLogger(__name__)


_limiter: InMemoryFixedWindowRateLimiter | None = None


def get_rate_limiter() -> InMemoryFixedWindowRateLimiter:
    """Return the process-wide rate limiter instance.

    The instance is cached in-module to preserve state across requests.
    """

    global _limiter

    if _limiter is None:
        _limiter = InMemoryFixedWindowRateLimiter()

    return _limiter


def _resolve(limiter: InMemoryFixedWindowRateLimiter | None) -> InMemoryFixedWindowRateLimiter:
    # An empty limiter is falsy (it defines __len__), so compare against None
    return limiter if limiter is not None else get_rate_limiter()


def build_rate_limit_key(identity: str, path: str) -> str:
    return f"{identity}:{path}"


def _hash_limiter_key(key: str) -> str:
    """Hash the rate limit key for logging without exposing token prefixes."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]


def check_rate_limit(
    headers: Mapping[str, str],
    path: str,
    policy: RateLimitPolicy = DEFAULT,
    limiter: InMemoryFixedWindowRateLimiter | None = None,
) -> RateLimitDecision:
    """Count a request from the client described by ``headers`` against ``path``."""

    limiter = _resolve(limiter)
    identity = derive_client_identity(headers)
    return limiter.check(build_rate_limit_key(identity, path), policy)


def reset_rate_limit(
    identity: str,
    path: str,
    limiter: InMemoryFixedWindowRateLimiter | None = None,
) -> bool:
    """Administrative override: forget one client's window for one route."""

    removed = _resolve(limiter).reset(build_rate_limit_key(identity, path))
    logger.info(
        "rate_limit.reset",
        extra={"key_hash": _hash_limiter_key(build_rate_limit_key(identity, path)), "removed": removed},
    )
    return removed


def clear_all_rate_limits(limiter: InMemoryFixedWindowRateLimiter | None = None) -> None:
    """Operational escape hatch: forget every window."""

    _resolve(limiter).clear()
    logger.warning("rate_limit.cleared")


def get_rate_limit_info(
    identity: str,
    path: str,
    limiter: InMemoryFixedWindowRateLimiter | None = None,
) -> RateLimitInfo:
    return _resolve(limiter).info(build_rate_limit_key(identity, path))


def rate_limit_headers(decision: RateLimitDecision) -> dict[str, str]:
    """``X-RateLimit-*`` headers describing the caller's remaining budget."""

    return {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(decision.reset_time_ms),
    }


def apply_rate_limit_headers(request: Request, response: Response) -> Response:
    """Copy the admission headers onto a Response built by the handler itself.

    FastAPI only merges dependency-set headers into responses it serializes,
    so handlers returning JSONResponse/Response objects call this instead.
    """

    decision: RateLimitDecision | None = getattr(request.state, "rate_limit", None)
    if decision is not None and decision.allowed and settings.rate_limit.include_headers:
        response.headers.update(rate_limit_headers(decision))
    return response


def rate_limited(
    policy: RateLimitPolicy = DEFAULT,
    *,
    audit_resource: AuditResource = AuditResource.ADMIN,
) -> Callable[..., Awaitable[RateLimitDecision | None]]:
    """Build a FastAPI dependency enforcing ``policy`` on a route.

    When admitted, the ``X-RateLimit-*`` headers are added to the response
    and the decision is stored on ``request.state.rate_limit`` for handlers
    that build their own Response objects. When rejected, a
    ``rate_limit_exceeded`` security event is recorded against
    ``audit_resource`` and RateLimitExceededError is raised (rendered as 429).

    Usage:
        @router.post("/login", dependencies=[Depends(rate_limited(AUTH))])
    """

    async def enforce_rate_limit(
        request: Request,
        response: Response,
        limiter: InMemoryFixedWindowRateLimiter = Depends(get_rate_limiter),
        recorder: AuditRecorder = Depends(get_audit_recorder),
    ) -> RateLimitDecision | None:
        if not settings.rate_limit.enabled:
            return None

        identity = derive_client_identity(request.headers)
        key = build_rate_limit_key(identity, request.url.path)
        key_hash = _hash_limiter_key(key)
        key_type = identity.split(":", 1)[0]

        decision = limiter.check(key, policy)
        request.state.rate_limit = decision

        if decision.allowed:
            logger.debug(
                "rate_limit.allowed",
                extra={
                    "key_type": key_type,
                    "key_hash": key_hash,
                    "limit": decision.limit,
                    "remaining": decision.remaining,
                    "window_ms": policy.window_ms,
                },
            )
            if settings.rate_limit.include_headers:
                response.headers.update(rate_limit_headers(decision))
            return decision

        retry_after = decision.retry_after_seconds(limiter.now_ms())
        logger.warning(
            "rate_limit.exceeded",
            extra={
                "key_type": key_type,
                "key_hash": key_hash,
                "limit": decision.limit,
                "window_ms": policy.window_ms,
                "retry_after_s": retry_after,
                "path": request.url.path,
            },
        )

        meta = get_request_metadata(request)
        await recorder.write(
            recorder.log_security_event,
            action=AuditAction.RATE_LIMIT_EXCEEDED,
            resource=audit_resource,
            error_message=decision.error or policy.message,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
            details={
                "path": request.url.path,
                "method": request.method,
                "keyType": key_type,
                "limit": decision.limit,
                "windowMs": policy.window_ms,
            },
        )

        raise RateLimitExceededError(
            message=decision.error or policy.message,
            limit=decision.limit,
            reset_time_ms=decision.reset_time_ms,
            retry_after_seconds=retry_after,
            include_headers=settings.rate_limit.include_headers,
        )

    return enforce_rate_limit
