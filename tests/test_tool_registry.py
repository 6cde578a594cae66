"""Tests for ai/tools/registry.py and the tool value types."""

from __future__ import annotations

from typing import Any, Mapping

import pytest

from inkwell.ai.session import SessionContext
from inkwell.ai.tools import (
    DEFAULT_CONFIRMATION_POLICY,
    DuplicateToolError,
    SimpleTool,
    ToolCall,
    ToolCategory,
    ToolErrorCode,
    ToolNotFoundError,
    ToolRegistry,
    ToolResult,
    ToolSpec,
)


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def make_spec(
    name: str = "echo",
    *,
    category: ToolCategory = ToolCategory.READ_ONLY,
    parameters: Mapping[str, Any] | None = None,
    always_confirm: bool = False,
) -> ToolSpec:
    return ToolSpec(
        name=name,
        description=f"The {name} tool",
        parameters=parameters or {},
        category=category,
        always_confirm=always_confirm,
    )


def make_tool(name: str = "echo", **kwargs: Any) -> SimpleTool:
    return SimpleTool(spec=make_spec(name, **kwargs), handler=lambda args, session: dict(args))


SEARCH_PARAMETERS = {
    "properties": {
        "query": {"type": "string", "description": "Text to look for"},
        "limit": {"type": "integer"},
        "ratio": {"type": "number"},
        "mode": {"type": "string", "enum": ["fast", "full"]},
        "flags": {"type": "array"},
    },
    "required": ["query"],
}


# -----------------------------------------------------------------------------
# Tests: value types
# -----------------------------------------------------------------------------


class TestToolSpec:
    def test_empty_name_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            ToolSpec(name="", description="nameless")

    def test_parameters_are_copied_and_frozen(self) -> None:
        """Mutating the source schema does not leak into the spec."""
        parameters = {"properties": {"path": {"type": "string"}}, "required": ["path"]}
        spec = ToolSpec(name="read", description="Read", parameters=parameters)
        parameters["properties"]["extra"] = {"type": "string"}

        assert "extra" not in spec.properties
        with pytest.raises(TypeError):
            spec.parameters["required"] = []  # type: ignore[index]

    def test_openai_format(self) -> None:
        spec = make_spec("search", parameters=SEARCH_PARAMETERS)
        payload = spec.to_openai_tool()

        assert payload["type"] == "function"
        assert payload["function"]["name"] == "search"
        assert payload["function"]["parameters"]["type"] == "object"
        assert payload["function"]["parameters"]["required"] == ["query"]
        assert set(payload["function"]["parameters"]["properties"]) == set(SEARCH_PARAMETERS["properties"])

    def test_label_falls_back_to_name(self) -> None:
        assert make_spec("echo").label == "echo"
        assert ToolSpec(name="echo", description="", display_name="Echo").label == "Echo"


class TestToolCall:
    def test_from_json_parses_object(self) -> None:
        call = ToolCall.from_json("echo", '{"message": "hi"}', call_id="call_1")
        assert call.arguments == {"message": "hi"}
        assert call.call_id == "call_1"
        assert call.argument_error is None

    def test_from_json_empty_is_no_arguments(self) -> None:
        assert ToolCall.from_json("echo", "").arguments == {}
        assert ToolCall.from_json("echo", None).arguments == {}

    def test_from_json_invalid_records_error(self) -> None:
        call = ToolCall.from_json("echo", "{not json")
        assert call.arguments == {}
        assert call.argument_error is not None
        assert "Invalid JSON" in call.argument_error

    def test_from_json_rejects_non_objects(self) -> None:
        call = ToolCall.from_json("echo", "[1, 2]")
        assert call.argument_error == "Arguments must be a JSON object, got list"


class TestToolResult:
    def test_success_cannot_carry_error(self) -> None:
        with pytest.raises(ValueError):
            ToolResult(success=True, error="boom")

    def test_failure_requires_error(self) -> None:
        with pytest.raises(ValueError):
            ToolResult(success=False)

    def test_failure_defaults_to_execution_error(self) -> None:
        result = ToolResult.failure("boom")
        assert result.error_code is ToolErrorCode.EXECUTION_ERROR
        assert result.to_dict() == {"success": False, "error": "boom", "error_code": "execution_error"}


class TestConfirmationPolicyTable:
    def test_every_category_has_a_policy(self) -> None:
        assert set(DEFAULT_CONFIRMATION_POLICY) == set(ToolCategory)

    def test_only_read_only_skips_confirmation(self) -> None:
        assert DEFAULT_CONFIRMATION_POLICY[ToolCategory.READ_ONLY] is False
        assert DEFAULT_CONFIRMATION_POLICY[ToolCategory.DOCUMENT_OPERATIONS] is True
        assert DEFAULT_CONFIRMATION_POLICY[ToolCategory.DESTRUCTIVE] is True
        assert DEFAULT_CONFIRMATION_POLICY[ToolCategory.EXTERNAL] is True


# -----------------------------------------------------------------------------
# Tests: registration
# -----------------------------------------------------------------------------


class TestRegistration:
    def test_register_and_lookup(self) -> None:
        registry = ToolRegistry()
        tool = make_tool("echo")
        registration = registry.register(tool, metadata={"source": "test"})

        assert registration.name == "echo"
        assert registration.metadata == {"source": "test"}
        assert registry.get("echo") is tool
        assert registry.has("echo")
        assert "echo" in registry
        assert len(registry) == 1

    def test_duplicate_name_raises(self) -> None:
        registry = ToolRegistry()
        registry.register(make_tool("echo"))

        with pytest.raises(DuplicateToolError) as exc_info:
            registry.register(make_tool("echo"))
        assert exc_info.value.name == "echo"

    def test_allow_override_replaces(self) -> None:
        registry = ToolRegistry()
        registry.register(make_tool("echo"))
        replacement = make_tool("echo", category=ToolCategory.EXTERNAL)
        registry.register(replacement, allow_override=True)

        assert registry.get("echo") is replacement
        assert len(registry) == 1

    def test_register_function(self) -> None:
        registry = ToolRegistry()
        registry.register_function(make_spec("greet"), lambda args, session: "hi")
        assert isinstance(registry.get("greet"), SimpleTool)

    def test_unregister(self) -> None:
        registry = ToolRegistry()
        registry.register(make_tool("echo"))

        assert registry.unregister("echo") is True
        assert registry.unregister("echo") is False
        assert registry.get("echo") is None

    def test_get_required_raises_for_unknown(self) -> None:
        with pytest.raises(ToolNotFoundError):
            ToolRegistry().get_required("missing")

    def test_listing_preserves_registration_order(self) -> None:
        registry = ToolRegistry()
        for name in ("b_tool", "a_tool", "c_tool"):
            registry.register(make_tool(name))
        assert registry.list_names() == ["b_tool", "a_tool", "c_tool"]
        assert [spec.name for spec in registry.list_specs()] == ["b_tool", "a_tool", "c_tool"]

    def test_snapshot_is_unaffected_by_later_mutation(self) -> None:
        registry = ToolRegistry()
        registry.register(make_tool("one"))
        context = SessionContext(enabled_categories=frozenset(ToolCategory))
        snapshot = registry.get_enabled_tools(context)

        registry.register(make_tool("two"))
        registry.unregister("one")

        assert [tool.name for tool in snapshot] == ["one"]


# -----------------------------------------------------------------------------
# Tests: session policy
# -----------------------------------------------------------------------------


class TestEnablement:
    def test_filters_by_enabled_categories(self) -> None:
        registry = ToolRegistry()
        registry.register(make_tool("read"))
        registry.register(make_tool("write", category=ToolCategory.DOCUMENT_OPERATIONS))
        registry.register(make_tool("delete", category=ToolCategory.DESTRUCTIVE))
        context = SessionContext(enabled_categories=frozenset({ToolCategory.READ_ONLY, ToolCategory.DESTRUCTIVE}))

        assert [tool.name for tool in registry.get_enabled_tools(context)] == ["read", "delete"]
        assert registry.is_enabled("delete", context)
        assert not registry.is_enabled("write", context)
        assert not registry.is_enabled("missing", context)

    def test_default_context_enables_read_and_document_operations(self) -> None:
        registry = ToolRegistry()
        registry.register(make_tool("read"))
        registry.register(make_tool("write", category=ToolCategory.DOCUMENT_OPERATIONS))
        registry.register(make_tool("remote", category=ToolCategory.EXTERNAL))

        names = [item["function"]["name"] for item in registry.get_openai_tools(SessionContext())]
        assert names == ["read", "write"]

    def test_repeated_queries_agree(self) -> None:
        registry = ToolRegistry()
        for name in ("zeta", "alpha", "mid"):
            registry.register(make_tool(name))
        registry.register(make_tool("write", category=ToolCategory.DOCUMENT_OPERATIONS))
        context = SessionContext()

        first = [tool.name for tool in registry.get_enabled_tools(context)]
        second = [tool.name for tool in registry.get_enabled_tools(context)]

        assert first == second == ["zeta", "alpha", "mid", "write"]


class TestRequiresConfirmation:
    def setup_method(self) -> None:
        self.registry = ToolRegistry()
        self.registry.register(make_tool("read"))
        self.registry.register(make_tool("write", category=ToolCategory.DOCUMENT_OPERATIONS))
        self.registry.register(make_tool("peek", always_confirm=True))

    def test_unknown_tool_needs_no_confirmation(self) -> None:
        assert self.registry.requires_confirmation("missing", SessionContext()) is False

    def test_category_default(self) -> None:
        context = SessionContext()
        assert self.registry.requires_confirmation("read", context) is False
        assert self.registry.requires_confirmation("write", context) is True

    def test_always_confirm_overrides_category(self) -> None:
        assert self.registry.requires_confirmation("peek", SessionContext()) is True

    def test_session_override_forces_confirmation(self) -> None:
        context = SessionContext(require_confirmation=frozenset({"read"}))
        assert self.registry.requires_confirmation("read", context) is True

    def test_trust_beats_every_other_rule(self) -> None:
        context = SessionContext(
            trusted_tools=frozenset({"write", "peek"}),
            require_confirmation=frozenset({"write"}),
        )
        assert self.registry.requires_confirmation("write", context) is False
        assert self.registry.requires_confirmation("peek", context) is False


class TestValidateParameters:
    def setup_method(self) -> None:
        self.registry = ToolRegistry()
        self.registry.register(make_tool("search", parameters=SEARCH_PARAMETERS))

    def test_valid_arguments(self) -> None:
        result = self.registry.validate_parameters("search", {"query": "notes", "limit": 5, "ratio": 0.5})
        assert result.valid
        assert bool(result)
        assert result.errors == ()

    def test_missing_required(self) -> None:
        result = self.registry.validate_parameters("search", {})
        assert not result.valid
        assert result.errors == ("Missing required parameter: query",)

    def test_none_counts_as_missing(self) -> None:
        result = self.registry.validate_parameters("search", {"query": None})
        assert result.errors == ("Missing required parameter: query",)

    def test_wrong_type(self) -> None:
        result = self.registry.validate_parameters("search", {"query": 42})
        assert result.errors == ("Parameter 'query' must be of type string, got integer",)

    def test_bool_is_not_a_number(self) -> None:
        result = self.registry.validate_parameters("search", {"query": "x", "limit": True, "ratio": False})
        assert len(result.errors) == 2
        assert "Parameter 'limit' must be of type integer, got boolean" in result.errors

    def test_integer_accepted_as_number(self) -> None:
        assert self.registry.validate_parameters("search", {"query": "x", "ratio": 3}).valid

    def test_enum_membership(self) -> None:
        result = self.registry.validate_parameters("search", {"query": "x", "mode": "slow"})
        assert result.errors == ("Parameter 'mode' must be one of: 'fast', 'full'",)

    def test_unknown_fields_are_tolerated(self) -> None:
        assert self.registry.validate_parameters("search", {"query": "x", "extra": object()}).valid

    def test_unknown_tool(self) -> None:
        result = self.registry.validate_parameters("missing", {})
        assert not result.valid
        assert result.message == "Tool 'missing' not found"

    def test_message_joins_errors(self) -> None:
        result = self.registry.validate_parameters("search", {"limit": "ten"})
        assert result.message == (
            "Missing required parameter: query; Parameter 'limit' must be of type integer, got string"
        )

    def test_closed_schema_still_tolerates_unknown_fields(self) -> None:
        self.registry.register(
            make_tool("closed", parameters={**SEARCH_PARAMETERS, "additionalProperties": False}),
        )
        assert self.registry.validate_parameters("closed", {"query": "x", "extra": 1}).valid

    def test_broken_schema_is_reported(self) -> None:
        self.registry.register(make_tool("broken", parameters={"properties": {"x": {"type": "strng"}}}))
        result = self.registry.validate_parameters("broken", {"x": "value"})
        assert not result.valid
        assert result.errors[0].startswith("Invalid parameter schema:")
