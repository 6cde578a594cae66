"""Tool contracts, registry and execution engine."""

from .types import (
    DEFAULT_CONFIRMATION_POLICY,
    SimpleTool,
    Tool,
    ToolCall,
    ToolCategory,
    ToolErrorCode,
    ToolExecutionRecord,
    ToolHandler,
    ToolResult,
    ToolSpec,
)
from .registry import (
    DuplicateToolError,
    ToolNotFoundError,
    ToolRegistration,
    ToolRegistry,
    ValidationResult,
)
from .executor import (
    ConfirmationHandler,
    ConfirmationRequest,
    ExecutorConfig,
    ToolExecutionEngine,
    format_tool_result_content,
)
from .remote import RemoteTool, register_server_tools, remote_tool_name, unregister_server_tools

__all__ = [
    # Types
    "DEFAULT_CONFIRMATION_POLICY",
    "SimpleTool",
    "Tool",
    "ToolCall",
    "ToolCategory",
    "ToolErrorCode",
    "ToolExecutionRecord",
    "ToolHandler",
    "ToolResult",
    "ToolSpec",
    # Registry
    "DuplicateToolError",
    "ToolNotFoundError",
    "ToolRegistration",
    "ToolRegistry",
    "ValidationResult",
    # Execution
    "ConfirmationHandler",
    "ConfirmationRequest",
    "ExecutorConfig",
    "ToolExecutionEngine",
    "format_tool_result_content",
    # Remote servers
    "RemoteTool",
    "register_server_tools",
    "remote_tool_name",
    "unregister_server_tools",
]
