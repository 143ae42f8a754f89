import asyncio
from collections.abc import AsyncGenerator
from pathlib import Path

import structlog
from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import StreamingResponse

from streamchat.core.cancellation import CancellationToken
from streamchat.core.config import settings
from streamchat.core.constants import PdfUpload, UserMessages
from streamchat.core.user_rate_limiter import enforce_chat_rate_limit
from streamchat.kb.ingester import DocumentManager
from streamchat.models.events import StreamEvent, TurnRequest
from streamchat.models.schemas import ChatRequest, CleanupResponse, UploadResponse
from streamchat.services.chat import ChatOrchestrator

logger = structlog.get_logger(__name__)

router = APIRouter()

_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def get_orchestrator(request: Request) -> ChatOrchestrator:
    return request.app.state.orchestrator


def get_document_manager(request: Request) -> DocumentManager:
    return request.app.state.documents


async def watch_disconnect(request: Request, token: CancellationToken, interval: float) -> None:
    """Signal ``token`` once the client goes away. Runs until cancelled."""
    while not token.cancelled:
        if await request.is_disconnected():
            logger.info("chat.client_disconnected")
            token.cancel("client_disconnected")
            return
        await asyncio.sleep(interval)


@router.post("", response_class=StreamingResponse, dependencies=[Depends(enforce_chat_rate_limit)])
async def chat(
    body: ChatRequest,
    request: Request,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
):
    """
    Stream one chat turn as Server-Sent Events.

    Each frame is ``data: {"chunk", "done", "status"?, "error"?}``. Exactly one
    frame has ``done: true`` unless the client disconnects first.
    Rate limited per client address.
    """
    turn = TurnRequest(
        session_id=body.session_id or settings.DEFAULT_SESSION_ID,
        text=body.message,
        mode=body.mode,
    )
    logger.info(
        "chat.request",
        session_id=turn.session_id,
        mode=turn.mode.value if turn.mode else None,
        query_preview=turn.text[:80],
    )

    async def event_generator() -> AsyncGenerator[str, None]:
        token = CancellationToken()
        watcher = asyncio.create_task(
            watch_disconnect(request, token, settings.DISCONNECT_POLL_INTERVAL)
        )
        events = orchestrator.handle_turn(turn, token)
        try:
            async for event in events:
                if token.cancelled:
                    break
                yield event.to_sse()
        except asyncio.CancelledError:
            token.cancel("stream_cancelled")
            raise
        except Exception:
            # handle_turn converts failures itself; this guards the transport
            logger.exception("chat.stream_error", session_id=turn.session_id)
            if not token.cancelled:
                yield StreamEvent.error(UserMessages.UNEXPECTED).to_sse()
        finally:
            token.cancel("stream_closed")
            watcher.cancel()
            await events.aclose()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers=_SSE_HEADERS,
    )


async def _read_upload_bytes(file: UploadFile) -> bytes:
    """Read the upload with a size guard. Raises 413 if too large, 400 if empty."""
    content = await file.read(settings.PDF_MAX_FILE_SIZE + 1)
    if len(content) > settings.PDF_MAX_FILE_SIZE:
        raise HTTPException(
            status_code=413,
            detail=f"File too large. Maximum size is {settings.PDF_MAX_FILE_SIZE // (1024 * 1024)} MB.",
        )
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty.")
    return content


@router.post("/upload-pdf", response_model=UploadResponse)
async def upload_pdf(
    file: UploadFile = File(...),
    session_id: str = Form(default="", alias="sessionId"),
    documents: DocumentManager = Depends(get_document_manager),
):
    """Ingest a PDF for a session so PDF-mode turns can answer from it."""
    filename = file.filename or "document.pdf"
    if Path(filename).suffix.lower() not in PdfUpload.ALLOWED_EXTENSIONS:
        raise HTTPException(status_code=400, detail="Only PDF files are supported.")
    if file.content_type and file.content_type not in PdfUpload.ALLOWED_CONTENT_TYPES:
        raise HTTPException(status_code=400, detail="Only PDF files are supported.")

    session_id = session_id.strip() or settings.DEFAULT_SESSION_ID
    content = await _read_upload_bytes(file)

    result = await documents.process_file(content, filename, session_id)
    if not result.success:
        logger.warning("chat.upload_failed", session_id=session_id, error=result.error)
        return UploadResponse(success=False, message="Failed to process PDF", error=result.error)

    logger.info("chat.upload_success", session_id=session_id, chunks=result.chunk_count)
    return UploadResponse(
        success=True,
        message="PDF processed successfully",
        chunk_count=result.chunk_count,
    )


@router.post("/cleanup-all-pdfs", response_model=CleanupResponse)
async def cleanup_all_pdfs(orchestrator: ChatOrchestrator = Depends(get_orchestrator)):
    """Drop every uploaded PDF, every index and every session."""
    sessions_cleared = await orchestrator.clear_all()
    return CleanupResponse(
        success=True,
        message="All PDFs and sessions cleared",
        sessions_cleared=sessions_cleared,
    )
