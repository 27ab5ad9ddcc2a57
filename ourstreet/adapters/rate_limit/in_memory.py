"""In-memory fixed-window rate limiter.

Notes:
- Per-process only: running multiple workers multiplies the effective limit,
  and a restart resets every counter.
- Thread-safe: the expire/increment/compare sequence runs under one lock.
- Windows are anchored at the first request for a key, not at wall-clock
  boundaries.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

from ourstreet.adapters.rate_limit.base import (
    AbstractRateLimiter,
    RateLimitDecision,
    RateLimitInfo,
    RateLimitPolicy,
)

logger = logging.getLogger(__name__)

DEFAULT_SWEEP_INTERVAL_SECONDS = 300.0


@dataclass
class RateWindow:
    count: int
    reset_time_ms: int


class InMemoryFixedWindowRateLimiter(AbstractRateLimiter):
    """Rate limiter using a fixed time window per key.

    Every call to :meth:`check` counts, including rejected ones: with
    ``max_requests=N`` the Nth request in a window is the last admitted and
    every later request in that window is rejected.

    Important:
        This limiter is per-process only. If the API runs with multiple workers
        (e.g., multiple Uvicorn/Gunicorn workers), each worker will enforce its
        own independent limits.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        """Initialize the in-memory rate limiter.

        Args:
            clock: Time source function returning UNIX time in seconds.
        """
        self._clock = clock
        self._lock = threading.RLock()
        self._windows: dict[str, RateWindow] = {}
        self._sweep_task: asyncio.Task[None] | None = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)

    def now_ms(self) -> int:
        return int(self._clock() * 1000)

    def check(self, key: str, policy: RateLimitPolicy) -> RateLimitDecision:
        """Count one request for ``key`` and decide whether it is admitted.

        Args:
            key: Limiter key (``identity:path``).
            policy: Ceiling and window to apply.

        Returns:
            RateLimitDecision with allowance decision and metadata.

        Raises:
            ValueError: If key is empty.
        """
        if not key:
            raise ValueError("key must be a non-empty string")

        now = self.now_ms()

        with self._lock:
            window = self._windows.get(key)
            if window is None or now >= window.reset_time_ms:
                window = RateWindow(count=0, reset_time_ms=now + policy.window_ms)
                self._windows[key] = window

            window.count += 1
            count = window.count
            reset_time_ms = window.reset_time_ms

        if count > policy.max_requests:
            return RateLimitDecision(
                allowed=False,
                limit=policy.max_requests,
                remaining=0,
                reset_time_ms=reset_time_ms,
                error=policy.message,
            )

        return RateLimitDecision(
            allowed=True,
            limit=policy.max_requests,
            remaining=policy.max_requests - count,
            reset_time_ms=reset_time_ms,
        )

    def info(self, key: str) -> RateLimitInfo:
        with self._lock:
            window = self._windows.get(key)
            if window is None:
                return RateLimitInfo(count=0, reset_time_ms=0, exists=False)
            return RateLimitInfo(
                count=window.count,
                reset_time_ms=window.reset_time_ms,
                exists=True,
            )

    def reset(self, key: str) -> bool:
        with self._lock:
            return self._windows.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._windows.clear()

    def sweep(self) -> int:
        """Delete every window whose reset time has passed.

        Expiry is also checked lazily in :meth:`check`, so sweeping only
        reclaims memory held by abandoned keys.
        """
        now = self.now_ms()
        with self._lock:
            expired = [k for k, w in self._windows.items() if w.reset_time_ms <= now]
            for key in expired:
                del self._windows[key]
            remaining = len(self._windows)

        if expired:
            logger.debug(
                "rate_limit.swept",
                extra={"removed": len(expired), "remaining": remaining},
            )
        return len(expired)

    @property
    def running(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    def start(self, interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS) -> None:
        """Schedule the periodic sweep on the running event loop.

        Calling start() while a sweep task is already running is a no-op.

        Raises:
            ValueError: If interval_seconds is not positive.
            RuntimeError: If called outside a running event loop.
        """
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        if self.running:
            return

        loop = asyncio.get_running_loop()
        self._sweep_task = loop.create_task(
            self._sweep_forever(interval_seconds),
            name="rate-limit-sweep",
        )
        logger.info("rate_limit.sweeper_started", extra={"interval_s": interval_seconds})

    async def stop(self) -> None:
        """Cancel the periodic sweep and wait for it to finish."""
        task, self._sweep_task = self._sweep_task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("rate_limit.sweeper_stopped")

    async def _sweep_forever(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                self.sweep()
            except Exception:
                logger.exception("rate_limit.sweep_failed")
