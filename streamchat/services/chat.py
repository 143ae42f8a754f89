"""Chat orchestrator: one pipeline per turn across the research and PDF modes.

Turn flow:
1. Resolve or create the session; a mode hint overwrites and persists.
2. Append the user utterance to history before any stage runs. A turn that
   fails or is cancelled afterwards leaves this entry without an answer.
3. Validate the model credential.
4. RESEARCH: researching -> context gathering -> streaming -> fragments.
   PDF: streaming -> retrieval -> fragments. PDF prompts carry no history.
5. streaming-complete, then the reformatting pass, then exactly one final
   formatted-complete event carrying the polished answer.
6. Commit the turn unless it was cancelled.

Every failure becomes a single terminal error event. Once the cancellation
token fires nothing else is yielded and the turn is not committed.
"""

import time
from collections.abc import AsyncIterator, Callable

import structlog

from streamchat.agents.context import ContextGatherer, ContextResult
from streamchat.agents.formatter import AnswerFormatter
from streamchat.agents.streaming import Prompt, TokenStreamer, context_system_prompt
from streamchat.core.cancellation import CancellationToken
from streamchat.core.config import settings
from streamchat.core.constants import RetrievalText, UserMessages
from streamchat.core.credentials import CredentialValidator
from streamchat.core.errors import ChatError, ErrorKind
from streamchat.core.metrics import chat_requests_total, chat_response_duration_seconds
from streamchat.kb.ingester import DocumentManager
from streamchat.models.events import ChatMode, Phase, StreamEvent, TurnRequest
from streamchat.services.sessions import Session, SessionStore

logger = structlog.get_logger(__name__)

_TERMINAL_MESSAGES: dict[ErrorKind, Callable[[ChatError], str]] = {
    ErrorKind.CONFIG: lambda e: e.message,
    ErrorKind.TOOL: lambda e: UserMessages.TOOL_FAILED,
    ErrorKind.STREAM: lambda e: f"An error occurred while processing your request: {e.message}",
    ErrorKind.RETRIEVAL: lambda e: UserMessages.RETRIEVAL_FAILED,
    ErrorKind.UNEXPECTED: lambda e: UserMessages.UNEXPECTED,
}


def terminal_message(error: ChatError) -> str:
    return _TERMINAL_MESSAGES[error.kind](error)


def compose_research_prompt(text: str, history: list[str], context: ContextResult) -> Prompt:
    if context.tool_error:
        note = (
            f"{text}\n\n"
            f"Note: the research tools failed while preparing this answer ({context.blob}). "
            "Tell the user that up-to-date information could not be retrieved, "
            "then answer as well as you can."
        )
        return Prompt(user=note, history=history)
    if context.blob.strip():
        return Prompt(user=text, system=context_system_prompt(context.blob), history=history)
    return Prompt(user=text, history=history)


def compose_pdf_prompt(text: str, excerpts: str) -> Prompt:
    system = (
        "You are a helpful assistant answering questions about a PDF the user uploaded. "
        "Answer using only the excerpts below. If they do not contain the answer, say so.\n\n"
        f"PDF excerpts:\n{excerpts}"
    )
    return Prompt(user=text, system=system)


class ChatOrchestrator:
    def __init__(
        self,
        sessions: SessionStore,
        documents: DocumentManager,
        credentials: CredentialValidator,
        gatherer: ContextGatherer | None = None,
        streamer: TokenStreamer | None = None,
        formatter: AnswerFormatter | None = None,
        history_limit: int | None = None,
    ) -> None:
        self.sessions = sessions
        self.documents = documents
        self.credentials = credentials
        self.gatherer = gatherer or ContextGatherer()
        self.streamer = streamer or TokenStreamer()
        self.formatter = formatter or AnswerFormatter()
        self._history_limit = history_limit or settings.SESSION_HISTORY_LIMIT

    async def handle_turn(
        self, turn: TurnRequest, token: CancellationToken
    ) -> AsyncIterator[StreamEvent]:
        start = time.monotonic()
        session = await self.sessions.get_or_create(turn.session_id)
        if turn.mode is not None:
            session.mode = turn.mode
        session.append_user_message(turn.text, self._history_limit)
        await self.sessions.update(session)

        mode = session.mode
        prior = session.prior_history()
        status = "error"
        log = logger.bind(session_id=session.session_id, mode=mode.value)
        log.info("orchestrator.turn_started", history=len(prior), query_preview=turn.text[:80])

        try:
            await self.credentials.ensure_valid()
            if token.cancelled:
                status = "cancelled"
                return

            if mode is ChatMode.PDF and not self.documents.has_pdf_for_session(session.session_id):
                log.info("orchestrator.pdf_missing")
                status = "no_document"
                yield StreamEvent.error(UserMessages.UPLOAD_FIRST)
                return

            if mode is ChatMode.PDF:
                stages = self._pdf_events(session, turn.text, token)
            else:
                stages = self._research_events(turn.text, prior, token)

            final_seen = False
            try:
                async for event in stages:
                    if token.cancelled:
                        break
                    yield event
                    final_seen = final_seen or event.is_final
            finally:
                await stages.aclose()

            if token.cancelled:
                status = "cancelled"
                log.info("orchestrator.turn_cancelled", reason=token.reason)
                return
            if not final_seen:
                # Retrieval lost the document between the check and the search
                status = "no_document"
                yield StreamEvent.error(UserMessages.UPLOAD_FIRST)
                return

            await self._commit(session)
            status = "success"
        except ChatError as e:
            log.warning("orchestrator.turn_failed", kind=e.kind.value, error=e.message)
            if token.cancelled:
                status = "cancelled"
                return
            yield StreamEvent.error(terminal_message(e))
        except Exception:
            log.exception("orchestrator.unexpected_error")
            if token.cancelled:
                status = "cancelled"
                return
            yield StreamEvent.error(UserMessages.UNEXPECTED)
        finally:
            chat_requests_total.labels(mode=mode.value, status=status).inc()
            chat_response_duration_seconds.labels(mode=mode.value).observe(
                time.monotonic() - start
            )
            log.info(
                "orchestrator.turn_finished",
                status=status,
                duration_ms=round((time.monotonic() - start) * 1000),
            )

    async def _research_events(
        self, text: str, prior: list[str], token: CancellationToken
    ) -> AsyncIterator[StreamEvent]:
        yield StreamEvent.marker(Phase.RESEARCHING)

        context = await self.gatherer.gather(text, prior, token)
        if token.cancelled:
            return
        if context.tool_error:
            logger.warning("orchestrator.tool_error_downgraded", error=context.blob[:200])

        yield StreamEvent.marker(Phase.STREAMING)
        async for event in self._stream_and_format(
            compose_research_prompt(text, prior, context), token
        ):
            yield event

    async def _pdf_events(
        self, session: Session, text: str, token: CancellationToken
    ) -> AsyncIterator[StreamEvent]:
        yield StreamEvent.marker(Phase.STREAMING)

        excerpts = await self.documents.search_similar_documents(session.session_id, text)
        if token.cancelled or excerpts == RetrievalText.NO_DOCUMENT:
            return

        async for event in self._stream_and_format(compose_pdf_prompt(text, excerpts), token):
            yield event

    async def _stream_and_format(
        self, prompt: Prompt, token: CancellationToken
    ) -> AsyncIterator[StreamEvent]:
        completion = self.streamer.stream(prompt, token)
        async for event in completion.events():
            if token.cancelled:
                return
            yield event

        if token.cancelled or not completion.completed:
            return

        polished = await self.formatter.reformat(completion.full_text)
        if token.cancelled:
            return
        yield StreamEvent(text=polished, phase=Phase.FORMATTED_COMPLETE, is_final=True)

    async def _commit(self, session: Session) -> None:
        session.completed_turns += 1
        await self.sessions.update(session)

    async def clear_all(self) -> int:
        """Drop every session and all uploaded documents. Returns sessions dropped."""
        self.documents.cleanup_session_files()
        dropped = await self.sessions.clear()
        logger.info("orchestrator.cleared", sessions=dropped)
        return dropped
