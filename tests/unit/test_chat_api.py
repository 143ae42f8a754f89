"""HTTP-level tests for the chat, upload, cleanup and health routes.

The lifespan is not run; each test wires fakes onto app.state directly.
"""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from starlette.requests import Request

from streamchat.agents.context import ContextResult
from streamchat.core.config import settings
from streamchat.core.constants import UserMessages
from streamchat.core.user_rate_limiter import SlidingWindowRateLimiter
from streamchat.kb.ingester import IngestResult
from streamchat.main import create_app
from streamchat.models.events import ChatMode, Phase, StreamEvent
from streamchat.services.chat import ChatOrchestrator
from streamchat.services.sessions import InMemorySessionStore


class FakeOrchestrator:
    def __init__(self, events: list[StreamEvent]) -> None:
        self.events = events
        self.turns = []
        self.clear_all = AsyncMock(return_value=2)

    async def handle_turn(self, turn, token):
        self.turns.append(turn)
        for event in self.events:
            yield event


_RESEARCH_EVENTS = [
    StreamEvent.marker(Phase.RESEARCHING),
    StreamEvent.marker(Phase.STREAMING),
    StreamEvent.fragment("Acme "),
    StreamEvent.fragment("Corp"),
    StreamEvent.marker(Phase.STREAMING_COMPLETE),
    StreamEvent(text="**Acme Corp**", phase=Phase.FORMATTED_COMPLETE, is_final=True),
]


def _app(orchestrator=None, documents=None, limit: int = 5):
    app = create_app()
    app.state.orchestrator = orchestrator or FakeOrchestrator(_RESEARCH_EVENTS)
    app.state.documents = documents or AsyncMock()
    app.state.chat_rate_limiter = SlidingWindowRateLimiter(limit=limit, window_seconds=60)
    return app


def _client(app) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


def _frames(body: str) -> list[dict]:
    return [
        json.loads(line[len("data: ") :])
        for line in body.split("\n\n")
        if line.startswith("data: ")
    ]


@pytest.mark.asyncio
async def test_chat_streams_sse_frames() -> None:
    orchestrator = FakeOrchestrator(_RESEARCH_EVENTS)
    async with _client(_app(orchestrator)) as client:
        response = await client.post(
            "/chat", json={"message": "Acme Corp", "sessionId": "s1", "mode": "research"}
        )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["cache-control"] == "no-cache"

    frames = _frames(response.text)
    assert frames[0] == {"chunk": "", "done": False, "status": "researching"}
    assert frames[2] == {"chunk": "Acme ", "done": False, "status": "streaming"}
    assert frames[-1] == {"chunk": "**Acme Corp**", "done": True, "status": "formatted-complete"}
    assert [f["done"] for f in frames].count(True) == 1

    turn = orchestrator.turns[0]
    assert turn.session_id == "s1"
    assert turn.mode is ChatMode.RESEARCH


@pytest.mark.asyncio
async def test_chat_defaults_session_id_and_leaves_mode_unset() -> None:
    orchestrator = FakeOrchestrator(_RESEARCH_EVENTS)
    async with _client(_app(orchestrator)) as client:
        await client.post("/chat", json={"message": "hello", "sessionId": "  "})

    assert orchestrator.turns[0].session_id == "default"
    assert orchestrator.turns[0].mode is None


@pytest.mark.asyncio
async def test_chat_error_frame_carries_error_flag() -> None:
    orchestrator = FakeOrchestrator([StreamEvent.error(UserMessages.UPLOAD_FIRST)])
    async with _client(_app(orchestrator)) as client:
        response = await client.post("/chat", json={"message": "summary?", "mode": "pdf"})

    assert _frames(response.text) == [
        {"chunk": UserMessages.UPLOAD_FIRST, "done": True, "error": True}
    ]


@pytest.mark.asyncio
async def test_chat_rejects_blank_message() -> None:
    async with _client(_app()) as client:
        response = await client.post("/chat", json={"message": "   "})

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_sixth_chat_request_in_window_is_rate_limited() -> None:
    orchestrator = FakeOrchestrator(_RESEARCH_EVENTS)
    async with _client(_app(orchestrator, limit=5)) as client:
        statuses = [
            (await client.post("/chat", json={"message": f"q{i}"})).status_code for i in range(5)
        ]
        limited = await client.post("/chat", json={"message": "q6"})

    assert statuses == [200] * 5
    assert limited.status_code == 429
    assert limited.json()["detail"] == UserMessages.RATE_LIMITED
    assert int(limited.headers["retry-after"]) >= 1
    assert len(orchestrator.turns) == 5


@pytest.mark.asyncio
async def test_upload_rejects_non_pdf_extension() -> None:
    documents = AsyncMock()
    async with _client(_app(documents=documents)) as client:
        response = await client.post(
            "/chat/upload-pdf",
            files={"file": ("notes.txt", b"hello", "text/plain")},
            data={"sessionId": "s1"},
        )

    assert response.status_code == 400
    documents.process_file.assert_not_awaited()


@pytest.mark.asyncio
async def test_upload_success_reports_chunk_count() -> None:
    documents = AsyncMock()
    documents.process_file = AsyncMock(return_value=IngestResult(success=True, chunk_count=4))
    async with _client(_app(documents=documents)) as client:
        response = await client.post(
            "/chat/upload-pdf",
            files={"file": ("report.pdf", b"%PDF-1.4 fake", "application/pdf")},
            data={"sessionId": "s1"},
        )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["chunkCount"] == 4
    documents.process_file.assert_awaited_once_with(b"%PDF-1.4 fake", "report.pdf", "s1")


@pytest.mark.asyncio
async def test_upload_failure_is_reported_in_body() -> None:
    documents = AsyncMock()
    documents.process_file = AsyncMock(
        return_value=IngestResult(success=False, error="No extractable text found in the PDF.")
    )
    async with _client(_app(documents=documents)) as client:
        response = await client.post(
            "/chat/upload-pdf",
            files={"file": ("scan.pdf", b"%PDF-1.4 fake", "application/pdf")},
        )

    body = response.json()
    assert response.status_code == 200
    assert body["success"] is False
    assert body["error"] == "No extractable text found in the PDF."
    assert documents.process_file.await_args.args[2] == "default"


@pytest.mark.asyncio
async def test_upload_rejects_empty_file() -> None:
    async with _client(_app()) as client:
        response = await client.post(
            "/chat/upload-pdf",
            files={"file": ("empty.pdf", b"", "application/pdf")},
        )

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_cleanup_all_clears_sessions_and_documents() -> None:
    orchestrator = FakeOrchestrator([])
    async with _client(_app(orchestrator)) as client:
        response = await client.post("/chat/cleanup-all-pdfs")

    assert response.status_code == 200
    assert response.json()["sessionsCleared"] == 2
    orchestrator.clear_all.assert_awaited_once()


@pytest.mark.asyncio
async def test_health_does_not_touch_the_provider() -> None:
    async with _client(_app()) as client:
        response = await client.get("/health", headers={"X-Request-ID": "req-1"})

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.headers["x-request-id"] == "req-1"


class _DisconnectingCompletion:
    """Streams slowly and flags the client as gone after the first fragment."""

    def __init__(self, token, client_state: dict) -> None:
        self._token = token
        self._client_state = client_state
        self.completed = False
        self.full_text = ""

    async def events(self):
        for fragment in ("Acme ", "Corp ", "anvils."):
            if self._token.cancelled:
                return
            self.full_text += fragment
            yield StreamEvent.fragment(fragment)
            self._client_state["gone"] = True
            await asyncio.sleep(0.2)
        self.completed = True
        yield StreamEvent.marker(Phase.STREAMING_COMPLETE)


@pytest.mark.asyncio
async def test_client_disconnect_stops_stream_and_skips_commit(monkeypatch) -> None:
    client_state = {"gone": False}

    async def is_disconnected(self) -> bool:
        return client_state["gone"]

    gatherer = AsyncMock()
    gatherer.gather = AsyncMock(return_value=ContextResult(""))
    streamer = AsyncMock()
    streamer.stream = lambda prompt, token: _DisconnectingCompletion(token, client_state)
    formatter = AsyncMock()
    credentials = AsyncMock()
    orchestrator = ChatOrchestrator(
        sessions=InMemorySessionStore(),
        documents=AsyncMock(),
        credentials=credentials,
        gatherer=gatherer,
        streamer=streamer,
        formatter=formatter,
    )
    monkeypatch.setattr(settings, "DISCONNECT_POLL_INTERVAL", 0.01)

    with patch.object(Request, "is_disconnected", new=is_disconnected):
        async with _client(_app(orchestrator)) as client:
            response = await client.post("/chat", json={"message": "Acme Corp", "sessionId": "s1"})

    frames = _frames(response.text)
    assert [f.get("status") for f in frames] == ["researching", "streaming", "streaming"]
    assert frames[-1]["chunk"] == "Acme "
    assert not any(f["done"] for f in frames)
    formatter.reformat.assert_not_awaited()

    session = await orchestrator.sessions.get("s1")
    assert session.completed_turns == 0
    assert list(session.history) == ["Acme Corp"]
