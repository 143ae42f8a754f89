"""Text chunking for PDF ingestion.

Sentence-boundary aware, fixed-size chunks with an overlap carried over from
the tail of the previous chunk so retrieval keeps context across boundaries.
"""

import re

import structlog

logger = structlog.get_logger(__name__)

DEFAULT_CHUNK_SIZE = 1500  # characters
DEFAULT_OVERLAP = 500  # characters

_SENTENCE_BOUNDARY = re.compile(r"(?<=[.?!])\s+|\n\n")


def _split_oversized(sentence: str, chunk_size: int) -> list[str]:
    """Hard-split a single sentence that is longer than a whole chunk."""
    return [sentence[i : i + chunk_size] for i in range(0, len(sentence), chunk_size)]


def chunk_text(
    text: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_OVERLAP,
) -> list[str]:
    """
    Split text into overlapping chunks of roughly chunk_size characters.

    Args:
        text: Input text. Runs of 3+ newlines are collapsed before chunking.
        chunk_size: Maximum characters per chunk before overlap is added.
        overlap: Characters copied from the tail of the previous chunk.

    Returns:
        Non-empty chunks in document order. Empty input returns [].

    Example:
        >>> text = "First sentence. Second sentence. " * 100
        >>> chunks = chunk_text(text, chunk_size=500, overlap=100)
        >>> len(chunks) > 1
        True
        >>> chunks[1].startswith(chunks[0][-100:].strip())
        True
    """
    if overlap >= chunk_size:
        raise ValueError("overlap must be smaller than chunk_size")

    text = re.sub(r"\n{3,}", "\n\n", text.strip())
    if len(text) <= chunk_size:
        return [text] if text else []

    pieces: list[str] = []
    for sentence in _SENTENCE_BOUNDARY.split(text):
        sentence = sentence.strip()
        if not sentence:
            continue
        if len(sentence) > chunk_size:
            pieces.extend(_split_oversized(sentence, chunk_size))
        else:
            pieces.append(sentence)

    chunks: list[str] = []
    current = ""
    fresh = 0  # characters added since the overlap was carried in

    for piece in pieces:
        if fresh + len(piece) + 1 <= chunk_size:
            current = f"{current} {piece}".strip()
            fresh += len(piece) + 1
            continue

        if current:
            chunks.append(current)
        tail = current[-overlap:].strip() if current and overlap > 0 else ""
        current = f"{tail} {piece}".strip()
        fresh = len(piece)

    if current:
        chunks.append(current)

    logger.debug("chunker.done", chunks=len(chunks), chars=len(text))
    return chunks
