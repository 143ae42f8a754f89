"""Process-wide AsyncOpenAI client.

Streaming, reformatting, embeddings and the credential probe all share one
client and therefore one httpx connection pool. Stage timeouts are applied
per call with ``with_options`` or the ``timeout`` argument.
"""

import structlog
from openai import AsyncOpenAI

from streamchat.core.config import settings

logger = structlog.get_logger(__name__)

# Each stage degrades on failure, so keep SDK-level retries short
_MAX_RETRIES = 1

_client: AsyncOpenAI | None = None


def get_openai_client() -> AsyncOpenAI:
    """Return the shared client, creating it on first use.

    Raises:
        openai.OpenAIError: no API key is configured.
    """
    global _client
    if _client is None:
        _client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY, max_retries=_MAX_RETRIES)
        logger.debug("openai_client.created")
    return _client


async def close_openai_client() -> None:
    global _client
    if _client is None:
        return
    await _client.close()
    _client = None
    logger.debug("openai_client.closed")
