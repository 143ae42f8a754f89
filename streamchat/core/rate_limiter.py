"""Outbound request pacing for third-party endpoints.

The research tools hit public endpoints that throttle aggressively, so every
concurrent turn shares one token bucket per endpoint.
"""

import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import structlog
from aiolimiter import AsyncLimiter

from streamchat.core.config import settings
from streamchat.core.metrics import rate_limiter_throttled_total

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# A wait longer than this means the bucket was empty
_THROTTLE_THRESHOLD_SECONDS = 0.01

web_search_limiter = AsyncLimiter(max_rate=settings.WEB_SEARCH_RATE_LIMIT, time_period=1.0)


async def rate_limited_call(
    limiter: AsyncLimiter,
    api_name: str,
    func: Callable[..., Awaitable[T]],
    *args: Any,
    **kwargs: Any,
) -> T:
    """Await ``func(*args, **kwargs)`` once ``limiter`` grants a slot.

    Time spent waiting for the slot is counted under ``api_name`` in
    ``rate_limiter_throttled_total``.
    """
    queued_at = time.monotonic()
    async with limiter:
        waited = time.monotonic() - queued_at
        if waited > _THROTTLE_THRESHOLD_SECONDS:
            rate_limiter_throttled_total.labels(api_name=api_name).inc()
            logger.debug("rate_limiter.throttled", api_name=api_name, waited_ms=round(waited * 1000))
        return await func(*args, **kwargs)
