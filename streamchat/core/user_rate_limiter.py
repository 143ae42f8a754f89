"""Per-client rate limiting for the chat endpoint using an in-memory sliding window.

Each client address gets N requests per rolling window. Timestamps older than
the window are evicted lazily on every check; there is no background sweep.
The map is not locked: every check runs to completion on the event loop
without awaiting.
"""

import time
from collections.abc import Callable

import structlog
from fastapi import HTTPException, Request

from streamchat.core.config import settings
from streamchat.core.constants import UserMessages
from streamchat.core.metrics import chat_rate_limited_total

logger = structlog.get_logger(__name__)


class SlidingWindowRateLimiter:
    """Allow at most ``limit`` hits per ``window_seconds`` for each key."""

    def __init__(
        self,
        limit: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: dict[str, list[float]] = {}
        self._last_sweep = clock()

    def __len__(self) -> int:
        """Number of keys currently tracked."""
        return len(self._hits)

    def _sweep(self, now: float) -> None:
        # Keys whose newest hit has left the window carry no state worth keeping
        idle = [
            key
            for key, timestamps in self._hits.items()
            if not timestamps or now - timestamps[-1] >= self.window_seconds
        ]
        for key in idle:
            del self._hits[key]
        self._last_sweep = now

    def hit(self, key: str) -> bool:
        """Record a request for ``key``; return False if it exceeds the limit.

        Rejected requests are not recorded, so a client that keeps retrying
        regains access once its accepted requests age out of the window.
        """
        now = self._clock()
        if now - self._last_sweep >= self.window_seconds:
            self._sweep(now)
        recent = [ts for ts in self._hits.get(key, []) if now - ts < self.window_seconds]

        if len(recent) >= self.limit:
            self._hits[key] = recent
            return False

        recent.append(now)
        self._hits[key] = recent
        return True

    def retry_after(self, key: str) -> int:
        """Seconds until the oldest recorded hit for ``key`` leaves the window."""
        timestamps = self._hits.get(key)
        if not timestamps:
            return 0
        remaining = self.window_seconds - (self._clock() - timestamps[0])
        return max(1, int(remaining + 0.999))

    def reset(self) -> None:
        self._hits.clear()


chat_rate_limiter = SlidingWindowRateLimiter(
    limit=settings.CHAT_RATE_LIMIT,
    window_seconds=settings.CHAT_RATE_WINDOW_SECONDS,
)


def _client_key(request: Request) -> str:
    return request.client.host if request.client else "unknown"


async def enforce_chat_rate_limit(request: Request) -> None:
    """
    FastAPI dependency for per-client chat rate limiting.

    Raises:
        HTTPException: 429 with a Retry-After header once the client has made
            more than CHAT_RATE_LIMIT requests inside the window.
    """
    limiter: SlidingWindowRateLimiter = getattr(
        request.app.state, "chat_rate_limiter", chat_rate_limiter
    )
    client = _client_key(request)

    if not limiter.hit(client):
        retry_after = limiter.retry_after(client)
        chat_rate_limited_total.inc()
        logger.warning(
            "rate_limit.exceeded",
            client=client,
            limit=limiter.limit,
            window_seconds=limiter.window_seconds,
            retry_after=retry_after,
        )
        raise HTTPException(
            status_code=429,
            detail=UserMessages.RATE_LIMITED,
            headers={"Retry-After": str(retry_after)},
        )

    logger.debug("rate_limit.check", client=client, limit=limiter.limit)
