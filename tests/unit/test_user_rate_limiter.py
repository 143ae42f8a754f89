"""Unit tests for the per-client sliding window rate limiter."""

from unittest.mock import MagicMock

import pytest
from fastapi import HTTPException

from streamchat.core.user_rate_limiter import SlidingWindowRateLimiter, enforce_chat_rate_limit


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_exactly_limit_requests_succeed_within_window() -> None:
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(limit=5, window_seconds=60, clock=clock)

    results = []
    for _ in range(5):
        results.append(limiter.hit("1.2.3.4"))
        clock.now += 1

    assert results == [True] * 5
    assert limiter.hit("1.2.3.4") is False


def test_request_succeeds_after_window_passes() -> None:
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(limit=5, window_seconds=60, clock=clock)
    for _ in range(5):
        assert limiter.hit("1.2.3.4")
    assert limiter.hit("1.2.3.4") is False

    clock.now += 60.5

    assert limiter.hit("1.2.3.4") is True


def test_rejected_hits_are_not_recorded() -> None:
    """A client hammering while blocked is released when its accepted hits expire."""
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(limit=2, window_seconds=10, clock=clock)
    assert limiter.hit("a")
    assert limiter.hit("a")

    for _ in range(20):
        clock.now += 0.4
        assert limiter.hit("a") is False

    clock.now = 1000.0 + 10.0
    assert limiter.hit("a") is True


def test_idle_clients_are_forgotten_after_a_window() -> None:
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(limit=5, window_seconds=60, clock=clock)
    for i in range(100):
        limiter.hit(f"10.0.0.{i}")
    assert len(limiter) == 100

    clock.now += 61
    limiter.hit("10.0.1.1")

    assert len(limiter) == 1
    assert limiter.retry_after("10.0.0.1") == 0


def test_identities_are_isolated() -> None:
    limiter = SlidingWindowRateLimiter(limit=1, window_seconds=60, clock=FakeClock())
    assert limiter.hit("a")
    assert limiter.hit("b")
    assert limiter.hit("a") is False


def test_retry_after_counts_down_from_oldest_hit() -> None:
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(limit=1, window_seconds=60, clock=clock)
    limiter.hit("a")
    clock.now += 20

    assert limiter.retry_after("a") == 40
    assert limiter.retry_after("unknown") == 0


def test_invalid_configuration_is_rejected() -> None:
    with pytest.raises(ValueError):
        SlidingWindowRateLimiter(limit=0, window_seconds=60)
    with pytest.raises(ValueError):
        SlidingWindowRateLimiter(limit=1, window_seconds=0)


def _request(host: str, limiter: SlidingWindowRateLimiter) -> MagicMock:
    request = MagicMock()
    request.client.host = host
    request.app.state.chat_rate_limiter = limiter
    return request


@pytest.mark.asyncio
async def test_dependency_raises_429_with_retry_after() -> None:
    limiter = SlidingWindowRateLimiter(limit=1, window_seconds=60, clock=FakeClock())
    request = _request("10.0.0.1", limiter)

    await enforce_chat_rate_limit(request)
    with pytest.raises(HTTPException) as exc_info:
        await enforce_chat_rate_limit(request)

    assert exc_info.value.status_code == 429
    assert exc_info.value.detail == "Too many requests, please try again later."
    assert exc_info.value.headers["Retry-After"] == "60"
