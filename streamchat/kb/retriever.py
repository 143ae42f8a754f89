"""PDF retrieval for document-grounded chat.

Vague "what is this document about" questions embed poorly against any single
chunk, so they get a fixed beginning/middle/end sample instead of a
similarity search. Everything else is a top-K cosine search.
"""

import re
import time
from collections.abc import Awaitable, Callable

import structlog

from streamchat.core.config import settings
from streamchat.core.constants import RetrievalText
from streamchat.core.errors import RetrievalError
from streamchat.core.metrics import orchestrator_stage_duration_seconds
from streamchat.kb.embedder import embed_query
from streamchat.kb.store import DocumentIndexStore

logger = structlog.get_logger(__name__)

_OVERVIEW_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\babout the (pdf|document|file)\b",
        r"\bwhat'?s in (this|the) (pdf|document|file)\b",
        r"\btell me about (this|the) (pdf|document|file)\b",
        r"\bwhat(?: is|'s) (this|the) (pdf|document|file) about\b",
        r"\b(summari[sz]e|overview of) (this|the) (pdf|document|file)\b",
    )
]

_SAMPLE_SIZE = 2


def is_overview_query(query: str) -> bool:
    return any(p.search(query) for p in _OVERVIEW_PATTERNS)


def build_overview(chunks: list[str]) -> str:
    """Two chunks each from the start, middle and end of the document."""
    middle = len(chunks) // 2
    start = "\n\n".join(chunks[:_SAMPLE_SIZE])
    centre = "\n\n".join(chunks[middle : middle + _SAMPLE_SIZE])
    end = "\n\n".join(chunks[-_SAMPLE_SIZE:])
    return (
        f"{RetrievalText.OVERVIEW_HEADER}\n\n"
        f"From the beginning:\n{start}\n\n"
        f"From the middle:\n{centre}\n\n"
        f"From the end:\n{end}"
    )


class DocumentRetriever:
    def __init__(
        self,
        indices: DocumentIndexStore,
        embed: Callable[[str], Awaitable[list[float]]] = embed_query,
        top_k: int | None = None,
    ) -> None:
        self._indices = indices
        self._embed = embed
        self.top_k = top_k or settings.RETRIEVAL_TOP_K

    async def retrieve(self, session_id: str, query: str) -> str:
        """Return excerpt text for ``query`` or one of the RetrievalText sentinels.

        Raises:
            RetrievalError: embedding the query failed.
        """
        index = self._indices.get(session_id)
        if index is None or len(index) == 0:
            logger.warning("retriever.no_document", session_id=session_id)
            return RetrievalText.NO_DOCUMENT

        if is_overview_query(query):
            logger.info("retriever.overview", session_id=session_id, chunks=len(index))
            return build_overview(index.chunks)

        start = time.monotonic()
        try:
            query_embedding = await self._embed(query)
        except Exception as e:
            logger.exception("retriever.embed_failed", session_id=session_id)
            raise RetrievalError(f"Could not embed query: {e}") from e
        finally:
            orchestrator_stage_duration_seconds.labels(stage="retrieve").observe(
                time.monotonic() - start
            )

        results = index.search(query_embedding, self.top_k)
        if not results:
            logger.info("retriever.no_results", session_id=session_id)
            return RetrievalText.NOT_FOUND

        logger.info(
            "retriever.success",
            session_id=session_id,
            results=len(results),
            top_score=round(results[0][1], 4),
        )
        return "\n\n".join(chunk for chunk, _ in results)
