"""Session state and the store the orchestrator reads and writes it through.

Sessions live for the lifetime of the process. The in-memory store is a plain
dict with no locking; two turns racing on the same session id may interleave
their history appends.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime

import structlog

from streamchat.core.config import settings
from streamchat.models.events import ChatMode

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class Session:
    session_id: str
    mode: ChatMode = ChatMode.RESEARCH
    history: deque[str] = field(default_factory=deque)
    completed_turns: int = 0
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def append_user_message(self, text: str, limit: int) -> None:
        """Append an utterance, evicting the oldest entries beyond ``limit``."""
        self.history.append(text)
        while len(self.history) > limit:
            self.history.popleft()
        self.updated_at = _utcnow()

    def prior_history(self) -> list[str]:
        """History as seen before the latest utterance was appended."""
        return list(self.history)[:-1]


class SessionStore(ABC):
    """Interface the orchestrator depends on; swap for a shared backend later."""

    async def init(self) -> None:
        return None

    async def teardown(self) -> None:
        await self.clear()

    @abstractmethod
    async def get(self, session_id: str) -> Session | None: ...

    @abstractmethod
    async def create(self, session_id: str, mode: ChatMode = ChatMode.RESEARCH) -> Session: ...

    @abstractmethod
    async def update(self, session: Session) -> None: ...

    @abstractmethod
    async def delete(self, session_id: str) -> bool: ...

    @abstractmethod
    async def clear(self) -> int: ...

    async def get_or_create(self, session_id: str) -> Session:
        session = await self.get(session_id)
        if session is None:
            session = await self.create(session_id)
        return session


class InMemorySessionStore(SessionStore):
    def __init__(self, history_limit: int | None = None) -> None:
        self.history_limit = history_limit or settings.SESSION_HISTORY_LIMIT
        self._sessions: dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    async def init(self) -> None:
        self._sessions = {}
        logger.info("sessions.init", history_limit=self.history_limit)

    async def teardown(self) -> None:
        dropped = await self.clear()
        logger.info("sessions.teardown", dropped=dropped)

    async def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    async def create(self, session_id: str, mode: ChatMode = ChatMode.RESEARCH) -> Session:
        session = Session(session_id=session_id, mode=mode)
        self._sessions[session_id] = session
        logger.info("sessions.created", session_id=session_id, mode=mode.value)
        return session

    async def update(self, session: Session) -> None:
        session.updated_at = _utcnow()
        self._sessions[session.session_id] = session

    async def delete(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    async def clear(self) -> int:
        count = len(self._sessions)
        self._sessions.clear()
        return count
