"""Adapter exposing tools from a connected tool server as registry tools.

Connection management lives outside this module. It only needs a client
session object with an awaitable ``call_tool(name, arguments=...)`` method
(the shape of the MCP Python SDK's ``ClientSession``) and the tool
definitions that server advertised.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Protocol

from .registry import DuplicateToolError, ToolRegistry
from .types import ToolCategory, ToolErrorCode, ToolResult, ToolSpec

if TYPE_CHECKING:  # pragma: no cover
    from ..session import Session, SessionContext

__all__ = [
    "RemoteToolSession",
    "RemoteTool",
    "remote_tool_name",
    "register_server_tools",
    "unregister_server_tools",
]

LOGGER = logging.getLogger(__name__)

REMOTE_PREFIX = "mcp"
_NAME_SANITIZER = re.compile(r"[^a-zA-Z0-9_-]")
_KNOWN_TYPES = {"string", "number", "integer", "boolean", "array", "object"}
_PARAM_PREVIEW_LIMIT = 100


class RemoteToolSession(Protocol):
    async def call_tool(self, name: str, arguments: Mapping[str, Any] | None = None) -> Any:
        ...


def _field(source: Any, name: str, default: Any = None) -> Any:
    if isinstance(source, Mapping):
        return source.get(name, default)
    return getattr(source, name, default)


def _sanitize(name: str) -> str:
    return _NAME_SANITIZER.sub("_", name)


def remote_tool_name(server_name: str, tool_name: str) -> str:
    """Return the registry name used for ``tool_name`` on ``server_name``."""
    return f"{REMOTE_PREFIX}__{_sanitize(server_name)}__{_sanitize(tool_name)}"


def _convert_input_schema(input_schema: Any) -> dict[str, Any]:
    if not isinstance(input_schema, Mapping) or not isinstance(input_schema.get("properties"), Mapping):
        return {"type": "object", "properties": {}, "required": []}
    required = [str(item) for item in input_schema.get("required") or ()]
    properties: dict[str, Any] = {}
    for key, schema in input_schema["properties"].items():
        schema = schema if isinstance(schema, Mapping) else {}
        kind = schema.get("type")
        converted: dict[str, Any] = {
            "type": kind if kind in _KNOWN_TYPES else "string",
            "description": schema.get("description") or f'Parameter "{key}"',
        }
        if schema.get("enum"):
            converted["enum"] = list(schema["enum"])
        items = schema.get("items")
        if isinstance(items, Mapping):
            item_type = items.get("type")
            converted["items"] = {"type": item_type if item_type in _KNOWN_TYPES else "string"}
        properties[str(key)] = converted
    return {"type": "object", "properties": properties, "required": required}


def _flatten_content(content: Any) -> str:
    parts: list[str] = []
    for block in content or ():
        kind = _field(block, "type")
        if kind == "text":
            parts.append(str(_field(block, "text", "")))
        elif kind == "image":
            parts.append(f"[Image: {_field(block, 'mimeType') or 'image'}]")
        elif kind == "resource":
            resource = _field(block, "resource")
            uri = _field(resource, "uri") if resource is not None else _field(block, "uri")
            parts.append(f"[Resource: {uri or 'unknown'}]")
    return "\n".join(parts)


class RemoteTool:
    """A tool whose ``execute`` forwards to a remote tool server."""

    def __init__(self, client: RemoteToolSession, server_name: str, definition: Any) -> None:
        self._client = client
        self._server_name = server_name
        self._remote_name = str(_field(definition, "name"))
        description = _field(definition, "description") or (
            f'Remote tool "{self._remote_name}" from server "{server_name}"'
        )
        schema = _field(definition, "inputSchema", _field(definition, "input_schema"))
        self._spec = ToolSpec(
            name=remote_tool_name(server_name, self._remote_name),
            description=str(description),
            parameters=_convert_input_schema(schema),
            category=ToolCategory.EXTERNAL,
            display_name=f"{server_name}: {self._remote_name}",
        )

    @property
    def name(self) -> str:
        return self._spec.name

    @property
    def spec(self) -> ToolSpec:
        return self._spec

    @property
    def server_name(self) -> str:
        return self._server_name

    @property
    def remote_name(self) -> str:
        return self._remote_name

    async def execute(self, arguments: Mapping[str, Any], session: Session) -> ToolResult:
        try:
            result = await self._client.call_tool(self._remote_name, arguments=dict(arguments))
        except Exception as exc:
            LOGGER.warning("Remote tool %s on %s failed: %s", self._remote_name, self._server_name, exc)
            return ToolResult.failure(f"Remote tool execution failed: {exc}", ToolErrorCode.EXECUTION_ERROR)
        text = _flatten_content(_field(result, "content"))
        if _field(result, "isError") is True:
            return ToolResult.failure(text or "Remote tool returned an error", ToolErrorCode.EXECUTION_ERROR)
        return ToolResult.ok(text or "Tool executed successfully")

    def confirmation_message(self, arguments: Mapping[str, Any]) -> str:
        lines = [f'Run remote tool "{self._spec.label}"']
        for key, value in (arguments or {}).items():
            text = value if isinstance(value, str) else repr(value)
            if len(text) > _PARAM_PREVIEW_LIMIT:
                text = text[:_PARAM_PREVIEW_LIMIT] + "..."
            lines.append(f"  {key}: {text}")
        return "\n".join(lines)


def register_server_tools(
    registry: ToolRegistry,
    server_name: str,
    client: RemoteToolSession,
    definitions: Iterable[Any],
    *,
    trusted: bool = False,
    context: SessionContext | None = None,
) -> list[str]:
    """Merge a server's advertised tools into ``registry``.

    Names already taken by a different tool are skipped with a warning; tools
    from a reconnecting server replace their previous registration. When
    ``trusted`` is set the new names are added to ``context.trusted_tools``.
    """
    registered: list[str] = []
    for definition in definitions:
        tool = RemoteTool(client, server_name, definition)
        existing = registry.get_registration(tool.name)
        override = existing is not None and existing.metadata.get("server") == server_name
        try:
            registry.register(tool, allow_override=override, metadata={"server": server_name})
        except DuplicateToolError:
            LOGGER.warning("Skipping remote tool %s: name already registered", tool.name)
            continue
        registered.append(tool.name)
    if trusted and context is not None:
        for name in registered:
            context.trust_tool(name)
    LOGGER.debug("Registered %d tool(s) from server %s", len(registered), server_name)
    return registered


def unregister_server_tools(registry: ToolRegistry, server_name: str) -> list[str]:
    """Remove every tool registered from ``server_name``."""
    removed: list[str] = []
    for name in registry.list_names():
        registration = registry.get_registration(name)
        if registration is not None and registration.metadata.get("server") == server_name:
            if registry.unregister(name):
                removed.append(name)
    LOGGER.debug("Removed %d tool(s) from server %s", len(removed), server_name)
    return removed
