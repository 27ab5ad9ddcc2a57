"""Request provenance helpers: client IP, user agent, bearer token, identity."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from fastapi import Request
from starlette.datastructures import Headers

UNKNOWN = "unknown"

# Bearer tokens are truncated before use as a rate limit identity
IDENTITY_TOKEN_PREFIX_CHARS = 20


@dataclass(frozen=True)
class RequestMeta:
    ip_address: str
    user_agent: str


def _as_headers(headers: Mapping[str, str]) -> Headers:
    if isinstance(headers, Headers):
        return headers
    return Headers(headers=dict(headers))


def get_bearer_token(headers: Mapping[str, str]) -> str | None:
    """Return the token of an ``Authorization: Bearer <token>`` header, if any."""

    raw = _as_headers(headers).get("authorization")
    if not raw:
        return None
    scheme, _, token = raw.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None


def get_client_ip(headers: Mapping[str, str]) -> str:
    # Prefer first X-Forwarded-For hop if present (common behind proxies)
    h = _as_headers(headers)
    forwarded = (h.get("x-forwarded-for") or "").split(",")[0].strip()
    if forwarded:
        return forwarded
    real_ip = (h.get("x-real-ip") or "").strip()
    return real_ip or UNKNOWN


def derive_client_identity(headers: Mapping[str, str]) -> str:
    """Build the rate limit identity for a request.

    Bearer-authenticated callers are identified by ``user:`` plus the first
    20 characters of their token, without verifying it; everyone else by
    ``ip:`` plus their forwarded address.
    """

    token = get_bearer_token(headers)
    if token:
        return f"user:{token[:IDENTITY_TOKEN_PREFIX_CHARS]}"
    return f"ip:{get_client_ip(headers)}"


def get_request_metadata(request: Request) -> RequestMeta:
    """Extract the provenance recorded on audit events."""

    return RequestMeta(
        ip_address=get_client_ip(request.headers),
        user_agent=request.headers.get("user-agent") or UNKNOWN,
    )
