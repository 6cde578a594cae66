"""Tool execution engine.

The engine is the single place where a model-issued :class:`ToolCall` turns
into a side effect. It validates, checks the session's enablement and
confirmation policy, runs the tool and records the outcome. Tool failures are
always returned as failed :class:`ToolResult` values and never raised, so a
misbehaving tool cannot abort the surrounding turn.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Mapping, Sequence

from .registry import ToolNotFoundError, ToolRegistry
from .types import ToolCall, ToolErrorCode, ToolExecutionRecord, ToolResult

if TYPE_CHECKING:  # pragma: no cover
    from ..session import Session, SessionContext

__all__ = [
    "ConfirmationRequest",
    "ConfirmationHandler",
    "ExecutorConfig",
    "ToolExecutionEngine",
    "format_tool_result_content",
]

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Confirmation
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ConfirmationRequest:
    """Everything a confirmation prompt needs to ask the user about one call."""

    tool_name: str
    display_name: str
    arguments: Mapping[str, Any]
    message: str
    session_id: str = ""


ConfirmationHandler = Callable[[ConfirmationRequest], "bool | Awaitable[bool]"]


# -----------------------------------------------------------------------------
# Executor Configuration
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ExecutorConfig:
    """Configuration for the execution engine.

    Attributes:
        default_timeout: Per-call timeout in seconds; ``None`` lets tools run to completion.
        log_arguments: Whether to log tool arguments (may contain document text).
        history_limit: Records kept per session.
    """

    default_timeout: float | None = None
    log_arguments: bool = False
    history_limit: int = 200


# -----------------------------------------------------------------------------
# Execution Engine
# -----------------------------------------------------------------------------


class ToolExecutionEngine:
    """Validates, authorizes, executes and records tool calls.

    Example:
        engine = ToolExecutionEngine(registry, confirmation_handler=ask_user)
        results = await engine.execute_tool_calls(response.tool_calls, session)
    """

    def __init__(
        self,
        registry: ToolRegistry,
        *,
        confirmation_handler: ConfirmationHandler | None = None,
        config: ExecutorConfig | None = None,
    ) -> None:
        self._registry = registry
        self._confirmation_handler = confirmation_handler
        self._config = config or ExecutorConfig()
        self._history: dict[str, deque[ToolExecutionRecord]] = {}

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    @property
    def config(self) -> ExecutorConfig:
        return self._config

    def set_confirmation_handler(self, handler: ConfirmationHandler | None) -> None:
        self._confirmation_handler = handler

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    async def execute_tool(self, call: ToolCall, session: Session) -> ToolResult:
        """Run one tool call through validation, policy and execution.

        Exactly one :class:`ToolExecutionRecord` is appended for the session,
        whatever the outcome.
        """
        context = session.context
        name = call.name
        if self._config.log_arguments:
            LOGGER.debug("Executing tool %s (call_id=%s) with arguments: %s", name, call.call_id, dict(call.arguments))
        else:
            LOGGER.debug("Executing tool %s (call_id=%s)", name, call.call_id)

        try:
            tool = self._registry.get_required(name)
        except ToolNotFoundError as exc:
            return self._finish(session, call, ToolResult.failure(str(exc), ToolErrorCode.TOOL_NOT_FOUND))

        if call.argument_error:
            failure = ToolResult.failure(f"Invalid parameters: {call.argument_error}", ToolErrorCode.INVALID_PARAMETERS)
            return self._finish(session, call, failure)
        validation = self._registry.validate_parameters(name, call.arguments)
        if not validation.valid:
            failure = ToolResult.failure(f"Invalid parameters: {validation.message}", ToolErrorCode.INVALID_PARAMETERS)
            return self._finish(session, call, failure)

        if not self._registry.is_enabled(name, context):
            failure = ToolResult.failure(
                f"Tool '{name}' is disabled for this session ({tool.spec.category.value} tools are not enabled)",
                ToolErrorCode.TOOL_DISABLED,
            )
            return self._finish(session, call, failure)

        confirmation_required = self._registry.requires_confirmation(name, context)
        confirmed: bool | None = None
        if confirmation_required:
            confirmed = await self._request_confirmation(tool, call, session)
            if not confirmed:
                failure = ToolResult.failure(f"User declined to run '{tool.spec.label}'", ToolErrorCode.USER_DECLINED)
                return self._finish(session, call, failure, confirmation_required=True, confirmed=False)

        result = await self._invoke(tool, call, session)
        return self._finish(session, call, result, confirmation_required=confirmation_required, confirmed=confirmed)

    async def execute_tool_calls(
        self,
        calls: Sequence[ToolCall],
        session: Session,
        *,
        halt_on_error: bool | None = None,
    ) -> list[ToolResult]:
        """Execute calls one after another, in the order given.

        When halting is active (the session's ``halt_on_tool_error`` unless
        overridden), the first failure ends the batch; later calls are neither
        executed nor recorded.
        """
        halt = session.context.halt_on_tool_error if halt_on_error is None else halt_on_error
        results: list[ToolResult] = []
        for index, call in enumerate(calls):
            result = await self.execute_tool(call, session)
            results.append(result)
            if not result.success and halt:
                skipped = len(calls) - index - 1
                if skipped:
                    LOGGER.info("Halting tool batch after %s failed; skipping %d call(s)", call.name, skipped)
                break
        return results

    async def _invoke(self, tool: Any, call: ToolCall, session: Session) -> ToolResult:
        timeout = self._config.default_timeout
        start_time = time.perf_counter()
        try:
            pending = tool.execute(call.arguments, session)
            if timeout is not None and timeout > 0:
                payload = await asyncio.wait_for(pending, timeout=timeout)
            else:
                payload = await pending
        except asyncio.TimeoutError:
            LOGGER.warning("Tool %s timed out after %.1fs", call.name, timeout)
            return ToolResult.failure(f"Tool '{call.name}' timed out after {timeout:.1f}s")
        except Exception as exc:
            duration_ms = (time.perf_counter() - start_time) * 1000
            LOGGER.warning("Tool %s failed after %.1fms: %s", call.name, duration_ms, exc)
            return ToolResult.failure(str(exc) or exc.__class__.__name__)
        duration_ms = (time.perf_counter() - start_time) * 1000
        LOGGER.debug("Tool %s completed in %.1fms", call.name, duration_ms)
        if isinstance(payload, ToolResult):
            return payload
        return ToolResult.ok(payload)

    async def _request_confirmation(self, tool: Any, call: ToolCall, session: Session) -> bool:
        handler = self._confirmation_handler
        if handler is None:
            LOGGER.warning("No confirmation handler configured; declining %s", call.name)
            return False
        request = ConfirmationRequest(
            tool_name=call.name,
            display_name=tool.spec.label,
            arguments=dict(call.arguments),
            message=_confirmation_message(tool, call),
            session_id=session.session_id,
        )
        try:
            decision = handler(request)
            if inspect.isawaitable(decision):
                decision = await decision
        except Exception:
            LOGGER.warning("Confirmation handler failed for %s; treating as declined", call.name, exc_info=True)
            return False
        return bool(decision)

    def _finish(
        self,
        session: Session,
        call: ToolCall,
        result: ToolResult,
        *,
        confirmation_required: bool = False,
        confirmed: bool | None = None,
    ) -> ToolResult:
        if not result.success:
            code = result.error_code.value if result.error_code else "error"
            LOGGER.warning("Tool %s failed [%s]: %s", call.name, code, result.error)
        record = ToolExecutionRecord(
            tool_name=call.name,
            arguments=call.arguments,
            result=result,
            confirmation_required=confirmation_required,
            confirmed=confirmed,
            call_id=call.call_id,
        )
        self._records_for(session.session_id).append(record)
        return result

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------
    def _records_for(self, session_id: str) -> deque[ToolExecutionRecord]:
        records = self._history.get(session_id)
        if records is None:
            records = deque(maxlen=max(1, self._config.history_limit))
            self._history[session_id] = records
        return records

    def get_execution_history(self, session_id: str) -> list[ToolExecutionRecord]:
        return list(self._history.get(session_id, ()))

    def clear_execution_history(self, session_id: str | None = None) -> None:
        if session_id is None:
            self._history.clear()
        else:
            self._history.pop(session_id, None)

    # ------------------------------------------------------------------
    # Presentation
    # ------------------------------------------------------------------
    @staticmethod
    def format_execution(record: ToolExecutionRecord) -> str:
        """Render one execution as a Markdown block for the chat transcript."""
        result = record.result
        status = "✓ Success" if result.success else "✗ Failed"
        lines = [f"### Tool Execution: {record.tool_name}", "", f"**Status:** {status}", ""]
        if result.success and result.data is not None:
            lines.extend(["**Result:**", "```json", _to_json(result.data), "```"])
        if result.error:
            lines.append(f"**Error:** {result.error}")
        return "\n".join(lines) + "\n"

    def describe_available_tools(self, context: SessionContext) -> str:
        """Render the session's enabled tools and their parameters as Markdown."""
        tools = self._registry.get_enabled_tools(context)
        if not tools:
            return "No tools are currently available."
        parts = ["## Available Tools", ""]
        for tool in tools:
            spec = tool.spec
            parts.append(f"### {spec.name}")
            parts.append(spec.description)
            parts.append("")
            if spec.properties:
                parts.append("**Parameters:**")
                for param, schema in spec.properties.items():
                    schema = schema if isinstance(schema, Mapping) else {}
                    required = " (required)" if param in spec.required else ""
                    kind = schema.get("type", "any")
                    parts.append(f"- `{param}` ({kind}){required}: {schema.get('description', '')}".rstrip())
                parts.append("")
        return "\n".join(parts).rstrip() + "\n"


def _confirmation_message(tool: Any, call: ToolCall) -> str:
    builder = getattr(tool, "confirmation_message", None)
    if callable(builder):
        try:
            message = builder(call.arguments)
        except Exception:
            LOGGER.debug("confirmation_message failed for %s", call.name, exc_info=True)
        else:
            if message:
                return str(message)
    if call.arguments:
        return f"Allow {tool.spec.label} to run with:\n{_to_json(dict(call.arguments))}"
    return f"Allow {tool.spec.label} to run?"


def _to_json(value: Any) -> str:
    try:
        return json.dumps(value, ensure_ascii=False, indent=2, default=str)
    except (TypeError, ValueError):
        return str(value)


def format_tool_result_content(result: Any) -> str:
    """Format a tool payload as text for inclusion in a model message."""
    if result is None:
        return "null"
    if isinstance(result, str):
        return result
    if isinstance(result, bool):
        return "true" if result else "false"
    if isinstance(result, (int, float)):
        return str(result)
    if isinstance(result, (dict, list, tuple)):
        return _to_json(result)
    to_dict = getattr(result, "to_dict", None)
    if callable(to_dict):
        return _to_json(to_dict())
    return str(result)
