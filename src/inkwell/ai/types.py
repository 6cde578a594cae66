"""Core types exchanged between the orchestrator and the model transport.

Everything here is frozen: a conversation turn is never edited after it has
been appended to a session, and a model request is a snapshot of the session
at the moment the call is issued.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Literal, Mapping, Protocol, Sequence, runtime_checkable

from .tools.types import ToolCall, ToolResult, ToolSpec

__all__ = [
    "TurnRole",
    "ToolCallOutcome",
    "ConversationTurn",
    "ModelRequest",
    "ModelResponse",
    "ChunkCallback",
    "ModelTransport",
    "StreamingModelTransport",
]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


TurnRole = Literal["system", "user", "assistant", "tool"]

ChunkCallback = Callable[[str], Any]


@dataclass(slots=True, frozen=True)
class ToolCallOutcome:
    """A tool call paired with the result the engine produced for it."""

    call: ToolCall
    result: ToolResult

    def to_dict(self) -> dict[str, Any]:
        return {
            "tool": self.call.name,
            "call_id": self.call.call_id,
            "arguments": dict(self.call.arguments),
            **self.result.to_dict(),
        }


# -----------------------------------------------------------------------------
# Conversation Turns
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ConversationTurn:
    """One entry in a session's append-only history.

    Attributes:
        role: Who produced the turn.
        content: Text shown to the model (and the user).
        tool_calls: Calls requested by an assistant turn.
        tool_results: Structured outcomes carried by a synthetic ``tool`` turn.
        created_at: Commit timestamp.
        metadata: Extra data that is never sent to the model.
    """

    role: TurnRole
    content: str
    tool_calls: tuple[ToolCall, ...] = ()
    tool_results: tuple[ToolCallOutcome, ...] = ()
    created_at: datetime = field(default_factory=_utcnow)
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def user(cls, content: str, **metadata: Any) -> ConversationTurn:
        return cls(role="user", content=content, metadata=metadata)

    @classmethod
    def assistant(
        cls,
        content: str,
        tool_calls: Sequence[ToolCall] | None = None,
        **metadata: Any,
    ) -> ConversationTurn:
        return cls(role="assistant", content=content, tool_calls=tuple(tool_calls or ()), metadata=metadata)

    @classmethod
    def tool_turn(cls, content: str, outcomes: Sequence[ToolCallOutcome], **metadata: Any) -> ConversationTurn:
        """Create the synthetic turn holding a round's tool results."""
        return cls(role="tool", content=content, tool_results=tuple(outcomes), metadata=metadata)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "role": self.role,
            "content": self.content,
            "created_at": self.created_at.isoformat(),
        }
        if self.tool_calls:
            payload["tool_calls"] = [
                {"name": call.name, "call_id": call.call_id, "arguments": dict(call.arguments)}
                for call in self.tool_calls
            ]
        if self.tool_results:
            payload["tool_results"] = [outcome.to_dict() for outcome in self.tool_results]
        return payload


# -----------------------------------------------------------------------------
# Model Request / Response
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ModelRequest:
    """Snapshot sent to the model transport for a single call.

    ``user_text`` is empty for follow-up calls: the newest user message is
    already part of ``history`` by then and the tool turn is the newest entry.
    """

    system_instruction: str
    history: tuple[ConversationTurn, ...] = ()
    user_text: str = ""
    tools: tuple[ToolSpec, ...] = ()
    turn_id: str = ""
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class ModelResponse:
    """What the model returned for a request.

    A response may carry both text and tool calls; both are processed.
    """

    text: str = ""
    tool_calls: tuple[ToolCall, ...] = ()
    grounding: Any = None
    finish_reason: str | None = None

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    @property
    def is_empty(self) -> bool:
        return not self.text.strip() and not self.tool_calls


# -----------------------------------------------------------------------------
# Transport Protocols
# -----------------------------------------------------------------------------


@runtime_checkable
class ModelTransport(Protocol):
    """Request/response access to a language model."""

    async def generate(self, request: ModelRequest) -> ModelResponse:
        ...


@runtime_checkable
class StreamingModelTransport(ModelTransport, Protocol):
    """Transport that can also deliver incremental text.

    ``generate_streaming`` calls ``on_chunk`` for each text delta and returns the
    assembled response once the stream ends. Cancelling the awaiting task stops
    the stream.
    """

    def generate_streaming(
        self, request: ModelRequest, on_chunk: ChunkCallback
    ) -> Awaitable[ModelResponse]:
        ...
