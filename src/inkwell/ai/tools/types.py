"""Tool system types.

This module defines the value objects that flow between the model, the
registry and the execution engine: tool specifications, tool calls, tool
results and the audit records kept per session.
"""

from __future__ import annotations

import inspect
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Mapping, Protocol, runtime_checkable

if TYPE_CHECKING:  # pragma: no cover
    from ..session import Session

__all__ = [
    "ToolCategory",
    "DEFAULT_CONFIRMATION_POLICY",
    "ToolErrorCode",
    "ToolSpec",
    "ToolCall",
    "ToolResult",
    "ToolExecutionRecord",
    "Tool",
    "ToolHandler",
    "SimpleTool",
]


# -----------------------------------------------------------------------------
# Tool Categories
# -----------------------------------------------------------------------------


class ToolCategory(str, Enum):
    """Closed set of tool categories; each maps to a default confirmation policy."""

    READ_ONLY = "read_only"
    DOCUMENT_OPERATIONS = "document_operations"
    DESTRUCTIVE = "destructive"
    EXTERNAL = "external"


DEFAULT_CONFIRMATION_POLICY: Mapping[ToolCategory, bool] = MappingProxyType(
    {
        ToolCategory.READ_ONLY: False,
        ToolCategory.DOCUMENT_OPERATIONS: True,
        ToolCategory.DESTRUCTIVE: True,
        ToolCategory.EXTERNAL: True,
    }
)

_UNMAPPED = set(ToolCategory) - set(DEFAULT_CONFIRMATION_POLICY)
if _UNMAPPED:  # pragma: no cover - guards future enum additions
    raise RuntimeError(f"No confirmation policy for categories: {sorted(c.value for c in _UNMAPPED)}")


class ToolErrorCode(str, Enum):
    """Machine-readable reasons a tool call did not succeed."""

    TOOL_NOT_FOUND = "tool_not_found"
    INVALID_PARAMETERS = "invalid_parameters"
    TOOL_DISABLED = "tool_disabled"
    USER_DECLINED = "user_declined"
    EXECUTION_ERROR = "execution_error"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# -----------------------------------------------------------------------------
# Tool Specification
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolSpec:
    """Specification for a tool's interface.

    Attributes:
        name: Unique identifier for the tool.
        description: Human-readable description shown to the model.
        parameters: JSON-schema-like object with ``properties`` and ``required``.
        category: Category driving enablement and default confirmation.
        always_confirm: Force confirmation regardless of category.
        display_name: Friendlier label for confirmation prompts and logs.
    """

    name: str
    description: str
    parameters: Mapping[str, Any] = field(default_factory=dict)
    category: ToolCategory = ToolCategory.READ_ONLY
    always_confirm: bool = False
    display_name: str = ""

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("ToolSpec.name is required")
        # Freeze the schema so a registration can't be mutated from outside.
        object.__setattr__(self, "parameters", MappingProxyType(json.loads(json.dumps(dict(self.parameters)))))

    @property
    def label(self) -> str:
        return self.display_name or self.name

    @property
    def properties(self) -> Mapping[str, Any]:
        props = self.parameters.get("properties")
        return props if isinstance(props, Mapping) else {}

    @property
    def required(self) -> tuple[str, ...]:
        required = self.parameters.get("required") or ()
        return tuple(str(item) for item in required)

    def schema(self) -> dict[str, Any]:
        """Return a plain, mutable copy of the parameter schema."""
        return {
            "type": "object",
            "properties": json.loads(json.dumps(dict(self.properties))),
            "required": list(self.required),
        }

    def to_openai_tool(self) -> dict[str, Any]:
        """Convert to OpenAI tool definition format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.schema(),
            },
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.schema(),
            "category": self.category.value,
            "always_confirm": self.always_confirm,
            "display_name": self.label,
        }


# -----------------------------------------------------------------------------
# Tool Calls and Results
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolCall:
    """A model-issued request to invoke a tool.

    ``arguments`` are unvalidated. When the model sent arguments that could not
    be decoded, ``argument_error`` explains why and ``arguments`` is empty.
    """

    name: str
    arguments: Mapping[str, Any] = field(default_factory=dict)
    call_id: str = ""
    argument_error: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "arguments", MappingProxyType(dict(self.arguments)))

    @classmethod
    def from_json(cls, name: str, raw_arguments: str | None, call_id: str = "") -> ToolCall:
        """Build a call from the JSON argument string used by chat completion APIs."""
        text = (raw_arguments or "").strip()
        if not text:
            return cls(name=name, arguments={}, call_id=call_id)
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as exc:
            return cls(name=name, call_id=call_id, argument_error=f"Invalid JSON in tool arguments: {exc}")
        if not isinstance(parsed, dict):
            return cls(
                name=name,
                call_id=call_id,
                argument_error=f"Arguments must be a JSON object, got {type(parsed).__name__}",
            )
        return cls(name=name, arguments=parsed, call_id=call_id)

    def arguments_json(self) -> str:
        return json.dumps(dict(self.arguments), ensure_ascii=False, default=str)


@dataclass(slots=True, frozen=True)
class ToolResult:
    """Outcome of executing a tool call.

    Exactly one of ``data``/``error`` is meaningful, selected by ``success``.
    """

    success: bool
    data: Any = None
    error: str | None = None
    error_code: ToolErrorCode | None = None

    def __post_init__(self) -> None:
        if self.success and (self.error is not None or self.error_code is not None):
            raise ValueError("Successful ToolResult cannot carry an error")
        if not self.success and not self.error:
            raise ValueError("Failed ToolResult requires an error message")

    @classmethod
    def ok(cls, data: Any = None) -> ToolResult:
        return cls(success=True, data=data)

    @classmethod
    def failure(cls, error: str, code: ToolErrorCode = ToolErrorCode.EXECUTION_ERROR) -> ToolResult:
        return cls(success=False, error=error, error_code=code)

    def to_dict(self) -> dict[str, Any]:
        if self.success:
            return {"success": True, "data": self.data}
        return {
            "success": False,
            "error": self.error,
            "error_code": self.error_code.value if self.error_code else None,
        }


@dataclass(slots=True, frozen=True)
class ToolExecutionRecord:
    """Audit entry appended by the execution engine for every invocation."""

    tool_name: str
    arguments: Mapping[str, Any]
    result: ToolResult
    timestamp: datetime = field(default_factory=_utcnow)
    confirmation_required: bool = False
    confirmed: bool | None = None
    call_id: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "arguments", MappingProxyType(dict(self.arguments)))

    def to_dict(self) -> dict[str, Any]:
        return {
            "tool_name": self.tool_name,
            "arguments": dict(self.arguments),
            "result": self.result.to_dict(),
            "timestamp": self.timestamp.isoformat(),
            "confirmation_required": self.confirmation_required,
            "confirmed": self.confirmed,
            "call_id": self.call_id,
        }


# -----------------------------------------------------------------------------
# Tool Protocol
# -----------------------------------------------------------------------------


@runtime_checkable
class Tool(Protocol):
    """Protocol for tool implementations.

    A tool may additionally define ``confirmation_message(arguments) -> str``
    to customise the text shown when asking the user for permission.
    """

    @property
    def name(self) -> str:
        ...

    @property
    def spec(self) -> ToolSpec:
        ...

    async def execute(self, arguments: Mapping[str, Any], session: Session) -> Any:
        """Run the tool. Return a payload or a :class:`ToolResult`; raise on failure."""
        ...


ToolHandler = Callable[[Mapping[str, Any], "Session"], "Any | Awaitable[Any]"]


@dataclass
class SimpleTool:
    """Tool implementation wrapping a plain (sync or async) callable.

    Example:
        tool = SimpleTool(
            spec=ToolSpec(name="greet", description="Greet someone"),
            handler=lambda args, session: f"Hello, {args.get('name', 'World')}!",
        )
    """

    spec: ToolSpec
    handler: ToolHandler
    message_builder: Callable[[Mapping[str, Any]], str] | None = None

    @property
    def name(self) -> str:
        return self.spec.name

    async def execute(self, arguments: Mapping[str, Any], session: Session) -> Any:
        result = self.handler(arguments, session)
        if inspect.isawaitable(result):
            result = await result
        return result

    def confirmation_message(self, arguments: Mapping[str, Any]) -> str:
        if self.message_builder is not None:
            return self.message_builder(arguments)
        return f"Allow {self.spec.label} to run?"
