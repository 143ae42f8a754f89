"""Structured errors raised by pipeline stages.

Every error carries an ErrorKind so the orchestrator can map it to a
user-facing message without inspecting exception names or message text.
"""

from enum import Enum


class ErrorKind(str, Enum):
    CONFIG = "config"
    TOOL = "tool"
    STREAM = "stream"
    RETRIEVAL = "retrieval"
    UNEXPECTED = "unexpected"


class ChatError(Exception):
    kind: ErrorKind = ErrorKind.UNEXPECTED

    def __init__(self, message: str, *, kind: ErrorKind | None = None) -> None:
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value!r}, message={self.message!r})"


class ConfigError(ChatError):
    """Missing or rejected model-service credential."""

    kind = ErrorKind.CONFIG


class ToolError(ChatError):
    kind = ErrorKind.TOOL


class StreamError(ChatError):
    """Generation failed after the stream was requested."""

    kind = ErrorKind.STREAM


class RetrievalError(ChatError):
    kind = ErrorKind.RETRIEVAL
