"""Stream events emitted by the orchestrator and their SSE wire encoding.

A turn moves through phases in one direction only:
NONE -> RESEARCHING? -> STREAMING -> STREAMING_COMPLETE -> FORMATTED_COMPLETE.

Error events are outside that order. They always carry Phase.NONE, so the
wire frame has no ``status``, and they only ever appear as the last event of a
turn, possibly after streamed fragments.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum


class Phase(str, Enum):
    NONE = "none"
    RESEARCHING = "researching"
    STREAMING = "streaming"
    STREAMING_COMPLETE = "streaming-complete"
    FORMATTED_COMPLETE = "formatted-complete"

    @property
    def order(self) -> int:
        return _PHASE_ORDER[self]


_PHASE_ORDER = {
    Phase.NONE: 0,
    Phase.RESEARCHING: 1,
    Phase.STREAMING: 2,
    Phase.STREAMING_COMPLETE: 3,
    Phase.FORMATTED_COMPLETE: 4,
}


class ChatMode(str, Enum):
    RESEARCH = "research"
    PDF = "pdf"


@dataclass(frozen=True)
class TurnRequest:
    session_id: str
    text: str
    mode: ChatMode | None = None


@dataclass(frozen=True)
class StreamEvent:
    text: str
    phase: Phase = Phase.NONE
    is_final: bool = False
    is_error: bool = False

    @classmethod
    def marker(cls, phase: Phase) -> StreamEvent:
        return cls(text="", phase=phase)

    @classmethod
    def fragment(cls, text: str) -> StreamEvent:
        return cls(text=text, phase=Phase.STREAMING)

    @classmethod
    def error(cls, message: str) -> StreamEvent:
        """Terminal failure frame. Phase.NONE marks it as outside the phase order."""
        return cls(text=message, phase=Phase.NONE, is_final=True, is_error=True)

    def to_payload(self) -> dict:
        """Wire shape: ``{chunk, done, status?, error?}``.

        ``status`` is omitted for Phase.NONE and ``error`` only appears when set.
        """
        payload: dict = {"chunk": self.text, "done": self.is_final}
        if self.phase is not Phase.NONE:
            payload["status"] = self.phase.value
        if self.is_error:
            payload["error"] = True
        return payload

    def to_sse(self) -> str:
        return f"data: {json.dumps(self.to_payload())}\n\n"
