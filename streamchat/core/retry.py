"""Retry utilities with exponential backoff for external HTTP calls.

Never raises: returns None once attempts are exhausted, so tool callers can
turn the failure into a plain-text result.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import httpx
import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# 4xx errors (except 429) will not succeed on retry.
_DEFAULT_NON_RETRYABLE_STATUSES: frozenset[int] = frozenset({400, 401, 403, 404, 405, 410, 422})


async def retry_with_backoff(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 10.0,
    non_retryable_statuses: frozenset[int] = _DEFAULT_NON_RETRYABLE_STATUSES,
    **kwargs: Any,
) -> T | None:
    """Retry async function with exponential backoff on failure.

    Args:
        func: Async function to retry
        *args: Positional arguments for func
        max_attempts: Maximum attempts (default 3)
        base_delay: Initial retry delay in seconds (default 1.0)
        max_delay: Maximum retry delay in seconds (default 10.0)
        non_retryable_statuses: HTTP status codes that fail immediately.
        **kwargs: Keyword arguments for func

    Returns:
        Result from successful func call, or None if all attempts failed
    """
    name = getattr(func, "__name__", repr(func))
    for attempt in range(1, max_attempts + 1):
        try:
            return await func(*args, **kwargs)
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            if status_code in non_retryable_statuses:
                logger.warning(
                    "retry.non_retryable_http_error",
                    func=name,
                    status_code=status_code,
                    error=str(e),
                )
                return None
            error = str(e)
        except Exception as e:
            status_code = None
            error = str(e)

        if attempt >= max_attempts:
            logger.error(
                "retry.exhausted",
                func=name,
                attempts=attempt,
                status_code=status_code,
                error=error,
            )
            return None

        delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
        logger.warning(
            "retry.attempt",
            func=name,
            attempt=attempt,
            max_attempts=max_attempts,
            delay_seconds=delay,
            status_code=status_code,
            error=error,
        )
        await asyncio.sleep(delay)

    return None
