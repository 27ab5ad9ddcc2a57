"""Unit tests for in-memory rate limiter adapter."""

import asyncio
import threading
from unittest.mock import Mock

import pytest

from ourstreet.adapters.rate_limit.base import RateLimitDecision, RateLimitPolicy
from ourstreet.adapters.rate_limit.in_memory import InMemoryFixedWindowRateLimiter


def test_allows_up_to_limit_in_same_window() -> None:
    clock = Mock(return_value=1000.0)
    limiter = InMemoryFixedWindowRateLimiter(clock=clock)
    policy = RateLimitPolicy(max_requests=3, window_ms=60_000)

    assert limiter.check("k", policy).allowed is True
    assert limiter.check("k", policy).allowed is True
    result = limiter.check("k", policy)
    assert result.allowed is True
    assert result.remaining == 0
    assert result.limit == 3
    assert result.reset_time_ms == 1_000_000 + 60_000


def test_blocks_request_after_limit_and_counts_it() -> None:
    clock = Mock(return_value=1000.0)
    limiter = InMemoryFixedWindowRateLimiter(clock=clock)
    policy = RateLimitPolicy(max_requests=2, window_ms=60_000, message="Slow down")

    assert limiter.check("k", policy).allowed is True
    assert limiter.check("k", policy).allowed is True

    blocked = limiter.check("k", policy)
    assert blocked.allowed is False
    assert blocked.remaining == 0
    assert blocked.error == "Slow down"
    # Rejected requests still increment the window
    assert limiter.info("k").count == 3

    assert limiter.check("k", policy).allowed is False
    assert limiter.info("k").count == 4


def test_remaining_counts_down_from_limit() -> None:
    limiter = InMemoryFixedWindowRateLimiter(clock=Mock(return_value=50.0))
    policy = RateLimitPolicy(max_requests=5, window_ms=1_000)

    remaining = [limiter.check("k", policy).remaining for _ in range(5)]

    assert remaining == [4, 3, 2, 1, 0]


def test_resets_on_new_window() -> None:
    clock = Mock(return_value=1000.0)
    limiter = InMemoryFixedWindowRateLimiter(clock=clock)
    policy = RateLimitPolicy(max_requests=1, window_ms=10_000)

    assert limiter.check("k", policy).allowed is True
    assert limiter.check("k", policy).allowed is False

    # Window expires exactly at its reset time
    clock.return_value = 1010.0
    fresh = limiter.check("k", policy)
    assert fresh.allowed is True
    assert fresh.remaining == policy.max_requests - 1
    assert fresh.reset_time_ms == 1_010_000 + 10_000


def test_window_is_kept_just_before_reset() -> None:
    clock = Mock(return_value=1000.0)
    limiter = InMemoryFixedWindowRateLimiter(clock=clock)
    policy = RateLimitPolicy(max_requests=1, window_ms=10_000)

    limiter.check("k", policy)
    clock.return_value = 1009.999

    assert limiter.check("k", policy).allowed is False


def test_isolated_by_key() -> None:
    clock = Mock(return_value=1000.0)
    limiter = InMemoryFixedWindowRateLimiter(clock=clock)
    policy = RateLimitPolicy(max_requests=1, window_ms=60_000)

    assert limiter.check("ip:1.1.1.1:/api/a", policy).allowed is True
    assert limiter.check("ip:1.1.1.1:/api/a", policy).allowed is False

    assert limiter.check("ip:1.1.1.1:/api/b", policy).allowed is True
    assert limiter.check("ip:2.2.2.2:/api/a", policy).allowed is True


def test_info_does_not_mutate(limiter: InMemoryFixedWindowRateLimiter) -> None:
    policy = RateLimitPolicy(max_requests=5, window_ms=60_000)

    missing = limiter.info("k")
    assert missing.exists is False
    assert missing.count == 0
    assert len(limiter) == 0

    limiter.check("k", policy)
    first = limiter.info("k")
    second = limiter.info("k")

    assert first == second
    assert first.exists is True
    assert first.count == 1
    assert limiter.check("k", policy).remaining == 3


def test_reset_and_clear(limiter: InMemoryFixedWindowRateLimiter) -> None:
    policy = RateLimitPolicy(max_requests=1, window_ms=60_000)
    limiter.check("a", policy)
    limiter.check("b", policy)

    assert limiter.reset("a") is True
    assert limiter.reset("a") is False
    assert limiter.check("a", policy).allowed is True

    limiter.clear()
    assert len(limiter) == 0
    assert limiter.check("b", policy).allowed is True


def test_sweep_removes_only_expired_windows() -> None:
    clock = Mock(return_value=1000.0)
    limiter = InMemoryFixedWindowRateLimiter(clock=clock)
    limiter.check("short", RateLimitPolicy(max_requests=1, window_ms=1_000))
    limiter.check("long", RateLimitPolicy(max_requests=1, window_ms=60_000))

    clock.return_value = 1001.0

    assert limiter.sweep() == 1
    assert limiter.info("short").exists is False
    assert limiter.info("long").exists is True
    assert limiter.sweep() == 0


def test_retry_after_rounds_up() -> None:
    decision = RateLimitDecision(allowed=False, limit=1, remaining=0, reset_time_ms=10_500)

    assert decision.retry_after_seconds(10_000) == 1
    assert decision.retry_after_seconds(9_000) == 2
    assert decision.retry_after_seconds(11_000) == 0


@pytest.mark.parametrize(
    "kwargs",
    [
        {"max_requests": 0, "window_ms": 60_000},
        {"max_requests": 1, "window_ms": 0},
    ],
)
def test_invalid_policy_args(kwargs: dict) -> None:
    with pytest.raises(ValueError):
        RateLimitPolicy(**kwargs)


def test_invalid_check_args(limiter: InMemoryFixedWindowRateLimiter) -> None:
    with pytest.raises(ValueError):
        limiter.check("", RateLimitPolicy(max_requests=1, window_ms=1_000))


@pytest.mark.asyncio
async def test_start_and_stop_sweeper() -> None:
    clock = Mock(return_value=1000.0)
    limiter = InMemoryFixedWindowRateLimiter(clock=clock)
    limiter.check("k", RateLimitPolicy(max_requests=1, window_ms=1))
    clock.return_value = 1001.0

    limiter.start(0.01)
    # Second start is a no-op
    limiter.start(0.01)
    assert limiter.running is True

    for _ in range(50):
        if len(limiter) == 0:
            break
        await asyncio.sleep(0.01)

    assert len(limiter) == 0

    await limiter.stop()
    assert limiter.running is False
    # Stopping twice is harmless
    await limiter.stop()


@pytest.mark.asyncio
async def test_start_rejects_non_positive_interval(limiter: InMemoryFixedWindowRateLimiter) -> None:
    with pytest.raises(ValueError):
        limiter.start(0)


def test_concurrent_checks_admit_exactly_the_limit() -> None:
    limiter = InMemoryFixedWindowRateLimiter(clock=Mock(return_value=1000.0))
    policy = RateLimitPolicy(max_requests=50, window_ms=60_000)
    threads, per_thread = 10, 20
    barrier = threading.Barrier(threads)
    admitted: list[int] = []
    admitted_lock = threading.Lock()

    def hammer() -> None:
        barrier.wait()
        allowed = sum(limiter.check("shared", policy).allowed for _ in range(per_thread))
        with admitted_lock:
            admitted.append(allowed)

    workers = [threading.Thread(target=hammer) for _ in range(threads)]
    for w in workers:
        w.start()
    for w in workers:
        w.join()

    assert sum(admitted) == 50
    assert limiter.info("shared").count == threads * per_thread
