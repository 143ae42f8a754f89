"""Unit tests for PDF retrieval and the per-session vector index."""

from unittest.mock import AsyncMock

import pytest

from streamchat.core.constants import RetrievalText
from streamchat.core.errors import RetrievalError
from streamchat.kb.retriever import DocumentRetriever, build_overview, is_overview_query
from streamchat.kb.store import DocumentIndexStore, VectorIndex


def _one_hot(i: int, dim: int = 12) -> list[float]:
    vec = [0.0] * dim
    vec[i] = 1.0
    return vec


def _ten_chunk_index() -> VectorIndex:
    chunks = [f"chunk-{i}" for i in range(10)]
    return VectorIndex.from_embeddings(chunks, [_one_hot(i) for i in range(10)])


@pytest.mark.parametrize(
    "query",
    [
        "what is this document about?",
        "What's this PDF about",
        "Tell me about this document",
        "what's in this document",
        "Can you say something about the pdf?",
    ],
)
def test_overview_phrasings_are_detected(query: str) -> None:
    assert is_overview_query(query)


def test_specific_questions_are_not_overview() -> None:
    assert not is_overview_query("What was the revenue in 2023?")


def test_overview_samples_beginning_middle_and_end() -> None:
    overview = build_overview([f"chunk-{i}" for i in range(10)])

    assert overview.startswith("Here's an overview of the PDF content:")
    assert "From the beginning:\nchunk-0\n\nchunk-1" in overview
    assert "From the middle:\nchunk-5\n\nchunk-6" in overview
    assert "From the end:\nchunk-8\n\nchunk-9" in overview


@pytest.mark.asyncio
async def test_overview_query_skips_similarity_search() -> None:
    store = DocumentIndexStore()
    store.put("s2", _ten_chunk_index())
    embed = AsyncMock()
    retriever = DocumentRetriever(store, embed=embed, top_k=8)

    result = await retriever.retrieve("s2", "what is this document about?")

    embed.assert_not_awaited()
    assert "From the beginning:" in result
    assert "From the middle:" in result
    assert "From the end:" in result
    # A top-8 result would contain eight chunks; the overview holds six
    assert sum(f"chunk-{i}" in result for i in range(10)) == 6


@pytest.mark.asyncio
async def test_top_k_search_orders_by_similarity() -> None:
    store = DocumentIndexStore()
    store.put("s", _ten_chunk_index())
    query = [0.0] * 12
    query[3] = 0.9
    query[7] = 0.4
    retriever = DocumentRetriever(store, embed=AsyncMock(return_value=query), top_k=2)

    result = await retriever.retrieve("s", "revenue figures")

    assert result == "chunk-3\n\nchunk-7"


@pytest.mark.asyncio
async def test_missing_document_returns_sentinel() -> None:
    retriever = DocumentRetriever(DocumentIndexStore(), embed=AsyncMock())
    assert await retriever.retrieve("nobody", "anything") == RetrievalText.NO_DOCUMENT


@pytest.mark.asyncio
async def test_zero_query_vector_returns_not_found() -> None:
    store = DocumentIndexStore()
    store.put("s", _ten_chunk_index())
    retriever = DocumentRetriever(store, embed=AsyncMock(return_value=[0.0] * 12))

    assert await retriever.retrieve("s", "anything") == RetrievalText.NOT_FOUND


@pytest.mark.asyncio
async def test_embedding_failure_raises_retrieval_error() -> None:
    store = DocumentIndexStore()
    store.put("s", _ten_chunk_index())
    retriever = DocumentRetriever(store, embed=AsyncMock(side_effect=RuntimeError("down")))

    with pytest.raises(RetrievalError):
        await retriever.retrieve("s", "revenue")


def test_index_rejects_mismatched_lengths() -> None:
    with pytest.raises(ValueError):
        VectorIndex.from_embeddings(["a", "b"], [[1.0, 0.0]])
