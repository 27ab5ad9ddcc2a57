"""Rate limiter interfaces.

The API should depend on this abstraction (not the concrete implementation)
so we can swap storage backends later (e.g., Redis) with minimal changes.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class RateLimitPolicy:
    """Ceiling applied to one endpoint class.

    Attributes:
        max_requests: Requests admitted per window.
        window_ms: Window length in milliseconds.
        message: Human-readable rejection reason returned to clients.
    """

    max_requests: int
    window_ms: int
    message: str = "Rate limit exceeded"

    def __post_init__(self) -> None:
        if self.max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if self.window_ms < 1:
            raise ValueError("window_ms must be >= 1")


@dataclass(frozen=True)
class RateLimitDecision:
    """Result of an admission check.

    Attributes:
        allowed: Whether the request may proceed.
        limit: Max requests per window for the policy that was applied.
        remaining: Requests left in the current window (0 when blocked).
        reset_time_ms: UNIX epoch milliseconds when the window expires.
        error: Policy message, set only when the request was rejected.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_time_ms: int
    error: str | None = None

    def retry_after_seconds(self, now_ms: int) -> int:
        """Seconds a client should wait before retrying."""
        return max(0, math.ceil((self.reset_time_ms - now_ms) / 1000))


@dataclass(frozen=True)
class RateLimitInfo:
    """Read-only snapshot of one window."""

    count: int
    reset_time_ms: int
    exists: bool


class AbstractRateLimiter(ABC):
    """Interface for rate limiters keyed by ``identity:path``."""

    @abstractmethod
    def check(self, key: str, policy: RateLimitPolicy) -> RateLimitDecision:
        """Count one request against ``key`` and decide admission.

        Args:
            key: Limiter key built from client identity and route path.
            policy: Ceiling and window to apply.

        Returns:
            RateLimitDecision describing whether it was allowed.
        """
        raise NotImplementedError

    @abstractmethod
    def info(self, key: str) -> RateLimitInfo:
        """Return the current window for ``key`` without mutating state."""
        raise NotImplementedError

    @abstractmethod
    def reset(self, key: str) -> bool:
        """Drop the window for ``key``. Returns True if one existed."""
        raise NotImplementedError

    @abstractmethod
    def clear(self) -> None:
        """Drop every window."""
        raise NotImplementedError

    @abstractmethod
    def sweep(self) -> int:
        """Delete expired windows and return how many were removed."""
        raise NotImplementedError

    @abstractmethod
    def now_ms(self) -> int:
        """Current time in epoch milliseconds, as seen by this limiter."""
        raise NotImplementedError
