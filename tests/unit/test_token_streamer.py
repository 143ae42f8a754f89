"""Unit tests for the token streaming stage."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from streamchat.agents.streaming import Prompt, TokenStreamer, context_system_prompt
from streamchat.core.cancellation import CancellationToken
from streamchat.core.errors import StreamError
from streamchat.models.events import Phase


def _chunk(content: str | None) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=content))])


class FakeStream:
    def __init__(self, chunks: list, fail_after: int | None = None) -> None:
        self._chunks = chunks
        self._fail_after = fail_after
        self.closed = False

    def __aiter__(self):
        return self._gen()

    async def _gen(self):
        for i, chunk in enumerate(self._chunks):
            if self._fail_after is not None and i >= self._fail_after:
                raise ConnectionError("connection reset")
            yield chunk

    async def close(self) -> None:
        self.closed = True


def _streamer(stream: FakeStream) -> tuple[TokenStreamer, MagicMock]:
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=stream)
    return TokenStreamer(client_factory=lambda: client, model="test-model", timeout=5), client


@pytest.mark.asyncio
async def test_fragments_forwarded_in_order_then_completion_marker() -> None:
    stream = FakeStream([_chunk("Hello"), _chunk(" world"), _chunk("!")])
    streamer, _ = _streamer(stream)

    completion = streamer.stream(Prompt(user="hi"), CancellationToken())
    events = [e async for e in completion.events()]

    assert [e.text for e in events] == ["Hello", " world", "!", ""]
    assert [e.phase for e in events[:3]] == [Phase.STREAMING] * 3
    assert events[-1].phase is Phase.STREAMING_COMPLETE
    assert not any(e.is_final for e in events)
    assert completion.full_text == "Hello world!"
    assert completion.completed is True
    assert stream.closed is True


@pytest.mark.asyncio
async def test_empty_and_whitespace_fragments_are_suppressed() -> None:
    stream = FakeStream([_chunk(None), _chunk(""), _chunk("  "), _chunk("Answer"), _chunk("\n")])
    streamer, _ = _streamer(stream)

    completion = streamer.stream(Prompt(user="hi"), CancellationToken())
    events = [e async for e in completion.events()]

    assert [e.text for e in events] == ["Answer", ""]
    assert completion.full_text == "Answer"


@pytest.mark.asyncio
async def test_cancellation_stops_consumption_without_completion_marker() -> None:
    stream = FakeStream([_chunk("one"), _chunk("two"), _chunk("three")])
    streamer, _ = _streamer(stream)
    token = CancellationToken()

    completion = streamer.stream(Prompt(user="hi"), token)
    received = []
    async for event in completion.events():
        received.append(event)
        token.cancel()

    assert [e.text for e in received] == ["one"]
    assert completion.completed is False
    assert stream.closed is True


@pytest.mark.asyncio
async def test_provider_failure_raises_stream_error() -> None:
    stream = FakeStream([_chunk("partial"), _chunk("more")], fail_after=1)
    streamer, _ = _streamer(stream)

    completion = streamer.stream(Prompt(user="hi"), CancellationToken())
    received = []
    with pytest.raises(StreamError) as exc_info:
        async for event in completion.events():
            received.append(event)

    assert [e.text for e in received] == ["partial"]
    assert "connection reset" in exc_info.value.message


@pytest.mark.asyncio
async def test_messages_replay_history_as_user_turns() -> None:
    stream = FakeStream([_chunk("ok")])
    streamer, client = _streamer(stream)
    prompt = Prompt(user="and now?", system=context_system_prompt("ctx"), history=["first", "second"])

    [e async for e in streamer.stream(prompt, CancellationToken()).events()]

    kwargs = client.chat.completions.create.await_args.kwargs
    assert kwargs["stream"] is True
    assert kwargs["model"] == "test-model"
    assert kwargs["messages"] == [
        {
            "role": "system",
            "content": "You are a helpful assistant. When answering, use the following context information: ctx",
        },
        {"role": "user", "content": "first"},
        {"role": "user", "content": "second"},
        {"role": "user", "content": "and now?"},
    ]
