"""PDF ingestion: store upload, extract text, chunk, embed, index per session.

Design decisions:
- One index per session; a new upload replaces the previous document.
- Uploaded files are kept on disk under UPLOAD_DIR, named
  ``{session_id}-{uuid}-{filename}`` so cleanup can match them by prefix.
- process_file never raises; failures come back as IngestResult(success=False).
"""

import asyncio
import io
import re
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

import pypdf
import structlog

from streamchat.core.config import settings
from streamchat.core.metrics import pdf_ingestions_total
from streamchat.kb.chunker import chunk_text
from streamchat.kb.embedder import embed_texts
from streamchat.kb.retriever import DocumentRetriever
from streamchat.kb.store import DocumentIndexStore, VectorIndex

logger = structlog.get_logger(__name__)

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")
_HEX32_GLOB = "[0-9a-f]" * 32


@dataclass(frozen=True)
class IngestResult:
    success: bool
    error: str | None = None
    chunk_count: int = 0


def _safe_filename(filename: str) -> str:
    name = Path(filename or "document.pdf").name
    return _UNSAFE_FILENAME_CHARS.sub("_", name) or "document.pdf"


def _safe_session_prefix(session_id: str) -> str:
    return _UNSAFE_FILENAME_CHARS.sub("_", session_id)


def extract_pdf_text(content: bytes) -> str:
    """Plain text of every page joined by blank lines. Returns "" on parse failure."""
    try:
        reader = pypdf.PdfReader(io.BytesIO(content))
        return "\n\n".join(page.extract_text() or "" for page in reader.pages).strip()
    except Exception:
        logger.exception("ingester.extract_error")
        return ""


class DocumentManager:
    def __init__(
        self,
        indices: DocumentIndexStore | None = None,
        upload_dir: str | Path | None = None,
        embed: Callable[[list[str]], Awaitable[list[list[float]]]] = embed_texts,
        retriever: DocumentRetriever | None = None,
    ) -> None:
        self.indices = indices or DocumentIndexStore()
        self.upload_dir = Path(upload_dir or settings.UPLOAD_DIR)
        self._embed = embed
        self.retriever = retriever or DocumentRetriever(self.indices)

    def _save(self, content: bytes, filename: str, session_id: str) -> Path:
        self.upload_dir.mkdir(parents=True, exist_ok=True)
        path = self.upload_dir / (
            f"{_safe_session_prefix(session_id)}-{uuid.uuid4().hex}-{_safe_filename(filename)}"
        )
        path.write_bytes(content)
        return path

    async def process_file(self, content: bytes, filename: str, session_id: str) -> IngestResult:
        logger.info(
            "ingester.started", session_id=session_id, filename=filename, size=len(content)
        )
        try:
            path = await asyncio.to_thread(self._save, content, filename, session_id)
        except OSError as e:
            pdf_ingestions_total.labels(status="storage_error").inc()
            logger.exception("ingester.save_failed", session_id=session_id)
            return IngestResult(success=False, error=f"Could not store upload: {e}")

        # pypdf is CPU-bound; keep it off the event loop so open streams keep flowing
        text = await asyncio.to_thread(extract_pdf_text, content)
        if not text:
            pdf_ingestions_total.labels(status="no_text").inc()
            logger.warning("ingester.no_text", session_id=session_id, filename=filename)
            self._remove_files([str(path)])
            return IngestResult(success=False, error="No extractable text found in the PDF.")

        chunks = chunk_text(text, settings.PDF_CHUNK_SIZE, settings.PDF_CHUNK_OVERLAP)
        try:
            embeddings = await self._embed(chunks)
            index = VectorIndex.from_embeddings(chunks, embeddings, source_files=[str(path)])
        except Exception as e:
            pdf_ingestions_total.labels(status="embed_error").inc()
            logger.exception("ingester.embed_failed", session_id=session_id, chunks=len(chunks))
            self._remove_files([str(path)])
            return IngestResult(success=False, error=f"Failed to process PDF: {e}")

        previous = self.indices.get(session_id)
        self.indices.put(session_id, index)
        if previous is not None:
            self._remove_files(previous.source_files)

        pdf_ingestions_total.labels(status="success").inc()
        logger.info("ingester.success", session_id=session_id, chunks=len(chunks))
        return IngestResult(success=True, chunk_count=len(chunks))

    def has_pdf_for_session(self, session_id: str) -> bool:
        return self.indices.has(session_id)

    async def search_similar_documents(self, session_id: str, query: str) -> str:
        return await self.retriever.retrieve(session_id, query)

    def _remove_files(self, paths: list[str]) -> int:
        removed = 0
        for raw in paths:
            try:
                Path(raw).unlink(missing_ok=True)
                removed += 1
            except OSError:
                logger.warning("ingester.unlink_failed", path=raw)
        return removed

    def cleanup_session_files(self, session_id: str | None = None) -> int:
        """Drop indices and uploaded files for one session, or for all when omitted.

        Returns the number of files removed from disk.
        """
        if session_id is None:
            self.indices.clear()
            pattern = "*"
        else:
            self.indices.pop(session_id)
            pattern = f"{_safe_session_prefix(session_id)}-{_HEX32_GLOB}-*"

        removed = 0
        if self.upload_dir.is_dir():
            files = [str(p) for p in self.upload_dir.glob(pattern) if p.is_file()]
            removed = self._remove_files(files)

        logger.info("ingester.cleanup", session_id=session_id, files_removed=removed)
        return removed
