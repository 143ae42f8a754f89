"""Batch OpenAI embeddings for PDF chunks and queries.

- One API call per batch of texts, batches issued concurrently.
- Returns vectors in the same order as the input list.
- Blank strings are rejected early; the embeddings API errors on them.
"""

import asyncio

import structlog

from streamchat.core.config import settings
from streamchat.core.constants import EmbeddingBatchSize
from streamchat.core.openai_client import get_openai_client

logger = structlog.get_logger(__name__)


async def _embed_batch(batch: list[str]) -> list[list[float]]:
    client = get_openai_client()
    response = await client.embeddings.create(model=settings.EMBEDDING_MODEL, input=batch)
    # The API may return items out of order; sort by index to be safe
    return [item.embedding for item in sorted(response.data, key=lambda d: d.index)]


async def embed_texts(
    texts: list[str], batch_size: int = EmbeddingBatchSize.DEFAULT
) -> list[list[float]]:
    """
    Return one embedding per text.

    Raises ValueError if any text is blank.
    Raises on OpenAI API errors; the caller decides how to surface them.
    """
    if not texts:
        return []

    for i, t in enumerate(texts):
        if not t.strip():
            raise ValueError(f"Empty text at index {i}: cannot embed blank content")

    batches = [texts[i : i + batch_size] for i in range(0, len(texts), batch_size)]
    results = await asyncio.gather(*(_embed_batch(b) for b in batches))

    vectors = [vec for batch in results for vec in batch]
    logger.info("embedder.success", texts=len(texts), batches=len(batches))
    return vectors


async def embed_query(query: str) -> list[float]:
    vectors = await embed_texts([query])
    return vectors[0]
