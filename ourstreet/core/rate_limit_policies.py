"""Named rate limit policies, one per endpoint class.

These ceilings are product decisions. Override one by deriving a new policy,
e.g. ``dataclasses.replace(AUTH, max_requests=10)``, and passing it to
``rate_limited``.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Mapping

from ourstreet.adapters.rate_limit.base import RateLimitPolicy

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS

DEFAULT = RateLimitPolicy(
    max_requests=100,
    window_ms=15 * MINUTE_MS,
    message="Too many requests, please try again later",
)

# Login, signup, token refresh
AUTH = RateLimitPolicy(
    max_requests=5,
    window_ms=15 * MINUTE_MS,
    message="Too many authentication attempts, please try again later",
)

UPLOAD = RateLimitPolicy(
    max_requests=10,
    window_ms=HOUR_MS,
    message="Upload limit reached, please try again later",
)

CREATE_ISSUE = RateLimitPolicy(
    max_requests=20,
    window_ms=HOUR_MS,
    message="Too many issues created, please try again later",
)

ADMIN = RateLimitPolicy(
    max_requests=200,
    window_ms=15 * MINUTE_MS,
    message="Admin rate limit exceeded",
)

# Unauthenticated endpoints
PUBLIC = RateLimitPolicy(
    max_requests=50,
    window_ms=15 * MINUTE_MS,
    message="Too many requests, please try again later",
)

RATE_LIMITS: Mapping[str, RateLimitPolicy] = MappingProxyType(
    {
        "DEFAULT": DEFAULT,
        "AUTH": AUTH,
        "UPLOAD": UPLOAD,
        "CREATE_ISSUE": CREATE_ISSUE,
        "ADMIN": ADMIN,
        "PUBLIC": PUBLIC,
    }
)
