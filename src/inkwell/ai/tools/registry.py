"""Tool registry.

Holds every known tool and answers the two policy questions the engine asks
per call: is this tool enabled for the session, and does it need the user's
confirmation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Mapping

import jsonschema

from .types import DEFAULT_CONFIRMATION_POLICY, SimpleTool, Tool, ToolHandler, ToolSpec

if TYPE_CHECKING:  # pragma: no cover
    from ..session import SessionContext

__all__ = [
    "ToolRegistry",
    "ToolRegistration",
    "ValidationResult",
    "DuplicateToolError",
    "ToolNotFoundError",
]

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Exceptions
# -----------------------------------------------------------------------------


class DuplicateToolError(Exception):
    """Raised when attempting to register a tool with a name that already exists."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool '{name}' is already registered")


class ToolNotFoundError(Exception):
    """Raised when a requested tool is not found in the registry."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool '{name}' not found")


# -----------------------------------------------------------------------------
# Records
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolRegistration:
    """Record of a registered tool."""

    name: str
    tool: Tool
    spec: ToolSpec
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class ValidationResult:
    """Outcome of :meth:`ToolRegistry.validate_parameters`."""

    valid: bool
    errors: tuple[str, ...] = ()

    def __bool__(self) -> bool:
        return self.valid

    @property
    def message(self) -> str:
        return "; ".join(self.errors)


# -----------------------------------------------------------------------------
# Tool Registry
# -----------------------------------------------------------------------------


class ToolRegistry:
    """Registry of tool contracts, in registration order.

    Mutations build a new mapping and swap it in, so a reader iterating the
    registry mid-turn sees either the old or the new set of tools.

    Example:
        registry = ToolRegistry()
        registry.register(list_files_tool)
        enabled = registry.get_enabled_tools(session.context)
    """

    def __init__(self) -> None:
        self._tools: Mapping[str, ToolRegistration] = MappingProxyType({})

    def register(
        self,
        tool: Tool,
        *,
        allow_override: bool = False,
        metadata: Mapping[str, Any] | None = None,
    ) -> ToolRegistration:
        """Register a tool implementation.

        Raises:
            DuplicateToolError: If the name is taken and ``allow_override`` is False.
        """
        spec = tool.spec
        name = spec.name
        current = self._tools
        if name in current and not allow_override:
            raise DuplicateToolError(name)
        registration = ToolRegistration(name=name, tool=tool, spec=spec, metadata=dict(metadata or {}))
        updated = dict(current)
        updated[name] = registration
        self._tools = MappingProxyType(updated)
        LOGGER.debug("Registered tool: %s (%s)", name, spec.category.value)
        return registration

    def register_function(
        self,
        spec: ToolSpec,
        handler: ToolHandler,
        *,
        allow_override: bool = False,
        metadata: Mapping[str, Any] | None = None,
    ) -> ToolRegistration:
        """Register a plain callable ``handler(arguments, session)`` as a tool."""
        return self.register(SimpleTool(spec=spec, handler=handler), allow_override=allow_override, metadata=metadata)

    def unregister(self, name: str) -> bool:
        """Remove a tool; returns False when nothing was registered under ``name``."""
        current = self._tools
        if name not in current:
            return False
        updated = dict(current)
        del updated[name]
        self._tools = MappingProxyType(updated)
        LOGGER.debug("Unregistered tool: %s", name)
        return True

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------
    def get(self, name: str) -> Tool | None:
        registration = self._tools.get(name)
        return registration.tool if registration is not None else None

    def get_required(self, name: str) -> Tool:
        tool = self.get(name)
        if tool is None:
            raise ToolNotFoundError(name)
        return tool

    def get_registration(self, name: str) -> ToolRegistration | None:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def list_names(self) -> list[str]:
        return list(self._tools)

    def list_specs(self) -> list[ToolSpec]:
        return [registration.spec for registration in self._tools.values()]

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    # ------------------------------------------------------------------
    # Session policy
    # ------------------------------------------------------------------
    def get_enabled_tools(self, context: SessionContext) -> list[Tool]:
        """Return the tools whose category is enabled for the session, in registration order."""
        enabled = context.enabled_categories
        return [registration.tool for registration in self._tools.values() if registration.spec.category in enabled]

    def is_enabled(self, name: str, context: SessionContext) -> bool:
        registration = self._tools.get(name)
        return registration is not None and registration.spec.category in context.enabled_categories

    def get_openai_tools(self, context: SessionContext) -> list[dict[str, Any]]:
        """Get the enabled tools as OpenAI function definitions."""
        return [tool.spec.to_openai_tool() for tool in self.get_enabled_tools(context)]

    def requires_confirmation(self, name: str, context: SessionContext) -> bool:
        """Decide whether calling ``name`` needs explicit user approval.

        Trusted tools never ask. Otherwise ``always_confirm`` and the session's
        ``require_confirmation`` set force a prompt, and the category table
        decides the rest.
        """
        registration = self._tools.get(name)
        if registration is None:
            return False
        if name in context.trusted_tools:
            return False
        spec = registration.spec
        if spec.always_confirm or name in context.require_confirmation:
            return True
        return DEFAULT_CONFIRMATION_POLICY[spec.category]

    def validate_parameters(self, name: str, arguments: Mapping[str, Any]) -> ValidationResult:
        """Check ``arguments`` against the tool's JSON schema.

        ``None`` values count as absent. Fields the schema does not mention are
        accepted whatever the schema says about additional properties.
        """
        registration = self._tools.get(name)
        if registration is None:
            return ValidationResult(valid=False, errors=(f"Tool '{name}' not found",))
        instance = {key: value for key, value in arguments.items() if value is not None}
        schema = registration.spec.schema()
        try:
            jsonschema.Draft202012Validator.check_schema(schema)
            issues = list(jsonschema.Draft202012Validator(schema).iter_errors(instance))
        except jsonschema.exceptions.SchemaError as exc:
            return ValidationResult(valid=False, errors=(f"Invalid parameter schema: {exc.message}",))

        # jsonschema reports one "required" issue per absent field; list them first.
        missing = [
            f"Missing required parameter: {field_name}"
            for field_name in registration.spec.required
            if field_name not in instance
        ]
        problems = [
            _describe_issue(issue)
            for issue in issues
            if not (issue.validator == "required" and not issue.absolute_path)
        ]
        errors = tuple(missing + problems)
        return ValidationResult(valid=not errors, errors=errors)


def _describe_issue(issue: jsonschema.exceptions.ValidationError) -> str:
    key = ".".join(str(part) for part in issue.absolute_path) or "arguments"
    if issue.validator == "type":
        declared = issue.validator_value
        allowed = declared if isinstance(declared, (list, tuple)) else (declared,)
        expected = " or ".join(str(item) for item in allowed)
        return f"Parameter '{key}' must be of type {expected}, got {_json_type_name(issue.instance)}"
    if issue.validator == "enum":
        options = ", ".join(repr(choice) for choice in issue.validator_value)
        return f"Parameter '{key}' must be one of: {options}"
    return f"Parameter '{key}': {issue.message}"


def _json_type_name(value: Any) -> str:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, Mapping):
        return "object"
    if value is None:
        return "null"
    return type(value).__name__
