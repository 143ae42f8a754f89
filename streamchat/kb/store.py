"""In-memory per-session vector indices.

Each ingested PDF becomes a VectorIndex: the chunk texts in document order plus
a row-normalised embedding matrix, so cosine similarity is a single dot product.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np


@dataclass
class VectorIndex:
    chunks: list[str]
    matrix: np.ndarray
    source_files: list[str] = field(default_factory=list)

    @classmethod
    def from_embeddings(
        cls,
        chunks: list[str],
        embeddings: list[list[float]],
        source_files: list[str] | None = None,
    ) -> VectorIndex:
        if len(chunks) != len(embeddings):
            raise ValueError("chunks and embeddings must have the same length")
        matrix = np.asarray(embeddings, dtype=np.float32)
        if matrix.ndim != 2:
            matrix = matrix.reshape(len(chunks), -1)
        norms = np.linalg.norm(matrix, axis=1, keepdims=True)
        norms[norms == 0] = 1.0
        return cls(chunks=list(chunks), matrix=matrix / norms, source_files=source_files or [])

    def __len__(self) -> int:
        return len(self.chunks)

    def search(self, query_embedding: list[float], top_k: int) -> list[tuple[str, float]]:
        """Return up to top_k ``(chunk, score)`` pairs, best first."""
        if not self.chunks or top_k <= 0:
            return []
        query = np.asarray(query_embedding, dtype=np.float32)
        norm = float(np.linalg.norm(query))
        if norm == 0.0:
            return []
        scores = self.matrix @ (query / norm)
        k = min(top_k, len(self.chunks))
        order = np.argsort(-scores, kind="stable")[:k]
        return [(self.chunks[i], float(scores[i])) for i in order]


class DocumentIndexStore:
    """Session id -> VectorIndex. Plain dict, no locking."""

    def __init__(self) -> None:
        self._indices: dict[str, VectorIndex] = {}

    def get(self, session_id: str) -> VectorIndex | None:
        return self._indices.get(session_id)

    def has(self, session_id: str) -> bool:
        index = self._indices.get(session_id)
        return index is not None and len(index) > 0

    def put(self, session_id: str, index: VectorIndex) -> None:
        self._indices[session_id] = index

    def pop(self, session_id: str) -> VectorIndex | None:
        return self._indices.pop(session_id, None)

    def clear(self) -> int:
        count = len(self._indices)
        self._indices.clear()
        return count
