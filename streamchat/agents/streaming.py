"""Token streaming stage.

Streams a chat completion as a lazily consumed sequence of StreamEvents.
The accumulated text is kept on the CompletionStream for the reformatting
handoff once iteration finishes.
"""

from __future__ import annotations

import time
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field

import structlog
from openai import AsyncOpenAI

from streamchat.core.cancellation import CancellationToken
from streamchat.core.config import settings
from streamchat.core.errors import StreamError
from streamchat.core.metrics import chat_stream_fragments_total, orchestrator_stage_duration_seconds
from streamchat.core.openai_client import get_openai_client
from streamchat.models.events import Phase, StreamEvent

logger = structlog.get_logger(__name__)

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."


def context_system_prompt(context: str) -> str:
    return (
        f"{DEFAULT_SYSTEM_PROMPT} When answering, use the following context information: {context}"
    )


@dataclass(frozen=True)
class Prompt:
    user: str
    system: str = DEFAULT_SYSTEM_PROMPT
    history: list[str] = field(default_factory=list)

    def to_messages(self) -> list[dict[str, str]]:
        # Only user turns are kept in history, so they replay as user messages
        return [
            {"role": "system", "content": self.system},
            *({"role": "user", "content": item} for item in self.history),
            {"role": "user", "content": self.user},
        ]


class CompletionStream:
    """One streamed completion. Iterate ``events()`` once; read ``full_text`` after."""

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str,
        prompt: Prompt,
        token: CancellationToken,
        timeout: float,
    ) -> None:
        self._client = client
        self._model = model
        self._prompt = prompt
        self._token = token
        self._timeout = timeout
        self._parts: list[str] = []
        self.completed = False

    @property
    def full_text(self) -> str:
        return "".join(self._parts)

    async def events(self) -> AsyncIterator[StreamEvent]:
        """Yield fragment events then one streaming-complete marker.

        Stops silently when the token fires. Raises StreamError on provider failure.
        """
        if self._token.cancelled:
            return

        start = time.monotonic()
        stream = None
        try:
            stream = await self._client.chat.completions.create(
                model=self._model,
                messages=self._prompt.to_messages(),
                temperature=settings.LLM_TEMPERATURE,
                stream=True,
                timeout=self._timeout,
            )
            async for chunk in stream:
                if self._token.cancelled:
                    logger.info("stream.cancelled", fragments=len(self._parts))
                    return
                if not chunk.choices:
                    continue
                content = chunk.choices[0].delta.content
                if not content or not content.strip():
                    continue
                self._parts.append(content)
                chat_stream_fragments_total.inc()
                yield StreamEvent.fragment(content)
                if self._token.cancelled:
                    logger.info("stream.cancelled", fragments=len(self._parts))
                    return
        except StreamError:
            raise
        except Exception as e:
            logger.exception("stream.failed", fragments=len(self._parts))
            raise StreamError(str(e)) from e
        finally:
            if stream is not None and hasattr(stream, "close"):
                await stream.close()
            orchestrator_stage_duration_seconds.labels(stage="stream").observe(
                time.monotonic() - start
            )

        self.completed = True
        logger.info("stream.completed", fragments=len(self._parts), chars=len(self.full_text))
        yield StreamEvent.marker(Phase.STREAMING_COMPLETE)


class TokenStreamer:
    def __init__(
        self,
        client_factory: Callable[[], AsyncOpenAI] = get_openai_client,
        model: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self._client_factory = client_factory
        self.model = model or settings.LLM_MODEL
        self.timeout = timeout or settings.STREAM_TIMEOUT

    def stream(self, prompt: Prompt, token: CancellationToken) -> CompletionStream:
        return CompletionStream(self._client_factory(), self.model, prompt, token, self.timeout)
