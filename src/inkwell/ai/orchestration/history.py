"""Session persistence collaborators.

The orchestrator hands every committed turn to a :class:`SessionHistoryStore`.
The in-memory store is enough for tests and the console entry point; a
durable store only has to implement the same two coroutines.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from ..session import Session, SessionContext
from ..types import ConversationTurn

__all__ = ["SessionHistoryStore", "InMemoryHistoryStore", "SessionManager"]

LOGGER = logging.getLogger(__name__)


@runtime_checkable
class SessionHistoryStore(Protocol):
    async def append_turn(self, session: Session, turn: ConversationTurn) -> None:
        ...

    async def load_history(self, session_id: str) -> list[ConversationTurn]:
        ...


class InMemoryHistoryStore:
    """Keeps every session's turns in a dictionary."""

    def __init__(self) -> None:
        self._turns: dict[str, list[ConversationTurn]] = {}

    async def append_turn(self, session: Session, turn: ConversationTurn) -> None:
        self._turns.setdefault(session.session_id, []).append(turn)

    async def load_history(self, session_id: str) -> list[ConversationTurn]:
        return list(self._turns.get(session_id, ()))

    def session_ids(self) -> list[str]:
        return list(self._turns)


class SessionManager:
    """Creates new sessions and resumes stored ones."""

    def __init__(self, store: SessionHistoryStore, *, default_context: SessionContext | None = None) -> None:
        self._store = store
        self._default_context = default_context or SessionContext()
        self._sessions: dict[str, Session] = {}

    @property
    def store(self) -> SessionHistoryStore:
        return self._store

    def create_session(self, *, title: str = "", context: SessionContext | None = None) -> Session:
        session = Session(context=context or self._default_context.copy(), title=title)
        self._sessions[session.session_id] = session
        LOGGER.debug("Created session %s", session.session_id)
        return session

    async def resume_session(self, session_id: str, *, context: SessionContext | None = None) -> Session:
        """Return the live session for ``session_id``, loading its history if needed."""
        existing = self._sessions.get(session_id)
        if existing is not None:
            return existing
        turns = await self._store.load_history(session_id)
        session = Session(session_id, context=context or self._default_context.copy(), history=turns)
        self._sessions[session_id] = session
        LOGGER.debug("Resumed session %s with %d turn(s)", session_id, len(turns))
        return session

    async def reset_session(self, session: Session) -> None:
        """Reload ``session`` from the store, discarding its in-memory history."""
        session.reset_history(await self._store.load_history(session.session_id))

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def close_session(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
