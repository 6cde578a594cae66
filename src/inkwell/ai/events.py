"""Turn lifecycle events and the bus that delivers them.

The orchestrator publishes these so a renderer can follow a turn without
being coupled to it: streamed text, stream restarts after a retry, tool
executions, and how the turn ended.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar
from weakref import WeakMethod

LOGGER = logging.getLogger(__name__)

E = TypeVar("E", bound="Event")

Handler = Callable[[E], None]


@dataclass(slots=True)
class Event:
    """Base class for all events published on an :class:`EventBus`."""


# Stream chunks arrive per token; publishing them is not worth a log line.
_QUIET_EVENT_TYPES: set[type] = set()


@dataclass(slots=True)
class TurnStarted(Event):
    """A turn began for ``session_id`` with the user's ``prompt``."""

    turn_id: str
    session_id: str
    prompt: str


@dataclass(slots=True)
class StreamChunk(Event):
    """Incremental model text for the current attempt of a turn."""

    turn_id: str
    content: str


_QUIET_EVENT_TYPES.add(StreamChunk)


@dataclass(slots=True)
class StreamRestarted(Event):
    """A streaming attempt failed and a fresh one started.

    Renderers should drop the partial text they received for this turn since
    the last restart: the new stream regenerates from scratch.
    """

    turn_id: str
    attempt: int


@dataclass(slots=True)
class ModelRetryScheduled(Event):
    """A model call failed and will be retried after ``delay`` seconds."""

    turn_id: str
    attempt: int
    delay: float
    error: str


@dataclass(slots=True)
class ToolExecuted(Event):
    """A tool call finished (successfully or not) during a turn."""

    turn_id: str
    tool_name: str
    call_id: str
    success: bool
    error: str = ""
    round: int = 0


@dataclass(slots=True)
class TurnCompleted(Event):
    turn_id: str
    response_text: str
    rounds: int
    tool_count: int


@dataclass(slots=True)
class TurnFailed(Event):
    """The turn ended without an assistant reply; ``code`` names the reason."""

    turn_id: str
    error: str
    code: str


@dataclass(slots=True)
class TurnCanceled(Event):
    turn_id: str


@dataclass(slots=True)
class NoticePosted(Event):
    """A soft, user-visible notice such as an empty model response."""

    turn_id: str
    message: str
    level: str = "info"


class EventBus(Generic[E]):
    """Typed publish/subscribe bus.

    Bound-method handlers are held weakly so a discarded renderer stops
    receiving events on its own; plain functions are held strongly. Handler
    exceptions are logged and never reach the publisher.

    Example::

        bus = EventBus()
        bus.subscribe(StreamChunk, lambda event: print(event.content, end=""))
    """

    __slots__ = ("_handlers",)

    def __init__(self) -> None:
        self._handlers: defaultdict[type[Event], list[_HandlerRef]] = defaultdict(list)

    def subscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        self._handlers[event_type].append(_HandlerRef.create(handler))
        LOGGER.debug("Subscribed %s to %s", _handler_name(handler), event_type.__name__)

    def unsubscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Remove the first registration of ``handler``; unknown handlers are ignored."""
        handlers = self._handlers.get(event_type)
        if not handlers:
            return
        for index, handler_ref in enumerate(handlers):
            if handler_ref.matches(handler):
                handlers.pop(index)
                LOGGER.debug("Unsubscribed %s from %s", _handler_name(handler), event_type.__name__)
                return

    def publish(self, event: E) -> None:
        """Deliver ``event`` synchronously to handlers of its exact type, in subscription order."""
        event_type = type(event)
        handlers = self._handlers.get(event_type)
        if not handlers:
            return
        if event_type not in _QUIET_EVENT_TYPES:
            LOGGER.debug("Publishing %s to %d handler(s)", event_type.__name__, len(handlers))
        dead: list[_HandlerRef] = []
        for handler_ref in list(handlers):
            handler = handler_ref.resolve()
            if handler is None:
                dead.append(handler_ref)
                continue
            try:
                handler(event)
            except Exception:
                LOGGER.exception("Handler %s raised for %s", _handler_name(handler), event_type.__name__)
        for handler_ref in dead:
            handlers.remove(handler_ref)

    def clear(self) -> None:
        self._handlers.clear()

    def handler_count(self, event_type: type[E] | None = None) -> int:
        if event_type is not None:
            return len(self._handlers.get(event_type, ()))
        return sum(len(handlers) for handlers in self._handlers.values())


class _HandlerRef:
    __slots__ = ("_ref", "_is_weak")

    def __init__(self, target: Any, is_weak: bool) -> None:
        self._ref = target
        self._is_weak = is_weak

    @classmethod
    def create(cls, handler: Handler) -> _HandlerRef:
        if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
            try:
                return cls(WeakMethod(handler), is_weak=True)
            except TypeError:
                pass
        return cls(handler, is_weak=False)

    def resolve(self) -> Handler | None:
        if self._is_weak:
            return self._ref()
        return self._ref

    def matches(self, handler: Handler) -> bool:
        resolved = self.resolve()
        return resolved is not None and resolved == handler


def _handler_name(handler: Handler) -> str:
    owner = getattr(handler, "__self__", None)
    func = getattr(handler, "__func__", None)
    if owner is not None and func is not None:
        return f"{type(owner).__name__}.{func.__name__}"
    return getattr(handler, "__name__", repr(handler))


__all__ = [
    "Event",
    "EventBus",
    "Handler",
    "TurnStarted",
    "StreamChunk",
    "StreamRestarted",
    "ModelRetryScheduled",
    "ToolExecuted",
    "TurnCompleted",
    "TurnFailed",
    "TurnCanceled",
    "NoticePosted",
]
