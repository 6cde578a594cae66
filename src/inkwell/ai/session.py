"""Session state: the append-only history plus per-session tool policy."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Iterable, Sequence

from .tools.types import ToolCategory
from .types import ConversationTurn

if TYPE_CHECKING:  # pragma: no cover
    from ..services.settings import Settings

__all__ = ["DEFAULT_ENABLED_CATEGORIES", "SessionContext", "Session"]

LOGGER = logging.getLogger(__name__)

DEFAULT_ENABLED_CATEGORIES: frozenset[ToolCategory] = frozenset(
    {ToolCategory.READ_ONLY, ToolCategory.DOCUMENT_OPERATIONS}
)


@dataclass(slots=True)
class SessionContext:
    """Context configuration consulted by the registry and the engine.

    The set-valued fields are frozensets; the mutators below swap a whole new
    set in so a reader mid-turn always sees a consistent value.
    """

    attached_documents: tuple[str, ...] = ()
    context_depth: int = 0
    enabled_categories: frozenset[ToolCategory] = DEFAULT_ENABLED_CATEGORIES
    trusted_tools: frozenset[str] = frozenset()
    require_confirmation: frozenset[str] = frozenset()
    halt_on_tool_error: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> SessionContext:
        categories: set[ToolCategory] = set()
        for value in settings.enabled_tool_categories:
            try:
                categories.add(ToolCategory(value))
            except ValueError:
                LOGGER.warning("Ignoring unknown tool category %r in settings", value)
        return cls(
            context_depth=max(0, int(settings.context_depth)),
            enabled_categories=frozenset(categories),
            trusted_tools=frozenset(settings.trusted_tools),
            halt_on_tool_error=bool(settings.stop_on_tool_error),
        )

    def enable_category(self, category: ToolCategory) -> None:
        self.enabled_categories = self.enabled_categories | {category}

    def disable_category(self, category: ToolCategory) -> None:
        self.enabled_categories = self.enabled_categories - {category}

    def trust_tool(self, name: str) -> None:
        self.trusted_tools = self.trusted_tools | {name}

    def revoke_trust(self, name: str) -> None:
        self.trusted_tools = self.trusted_tools - {name}

    def attach(self, *paths: str) -> None:
        merged = list(self.attached_documents)
        merged.extend(path for path in paths if path not in merged)
        self.attached_documents = tuple(merged)

    def detach(self, path: str) -> None:
        self.attached_documents = tuple(item for item in self.attached_documents if item != path)

    def copy(self) -> SessionContext:
        return replace(self)


def _new_session_id() -> str:
    return f"session-{uuid.uuid4().hex[:12]}"


class Session:
    """A conversation: identifier, ordered history and context configuration."""

    def __init__(
        self,
        session_id: str | None = None,
        *,
        context: SessionContext | None = None,
        history: Iterable[ConversationTurn] = (),
        title: str = "",
    ) -> None:
        self.session_id = session_id or _new_session_id()
        self.context = context or SessionContext()
        self.title = title
        self.created_at = datetime.now(timezone.utc)
        self._history: list[ConversationTurn] = list(history)

    @property
    def history(self) -> tuple[ConversationTurn, ...]:
        return tuple(self._history)

    def append_turn(self, turn: ConversationTurn) -> None:
        self._history.append(turn)

    def reset_history(self, turns: Sequence[ConversationTurn] = ()) -> None:
        """Replace the whole history; only used for explicit session resets."""
        self._history = list(turns)
        LOGGER.debug("Session %s history reset (%d turns)", self.session_id, len(self._history))

    def __len__(self) -> int:
        return len(self._history)

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"Session(id={self.session_id!r}, turns={len(self._history)})"
