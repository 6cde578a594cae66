"""Turn orchestration: the model/tool loop and its collaborators."""

from .context import ContextDocument, DocumentContextBuilder, extract_links
from .history import InMemoryHistoryStore, SessionHistoryStore, SessionManager
from .orchestrator import (
    DEFAULT_SYSTEM_INSTRUCTION,
    AgentTurnOrchestrator,
    OrchestratorConfig,
    TurnErrorCode,
    TurnInProgressError,
    TurnOutcome,
    TurnState,
    TurnStatus,
    format_tool_results,
)

__all__ = [
    # Orchestrator
    "DEFAULT_SYSTEM_INSTRUCTION",
    "AgentTurnOrchestrator",
    "OrchestratorConfig",
    "TurnErrorCode",
    "TurnInProgressError",
    "TurnOutcome",
    "TurnState",
    "TurnStatus",
    "format_tool_results",
    # Collaborators
    "ContextDocument",
    "DocumentContextBuilder",
    "extract_links",
    "InMemoryHistoryStore",
    "SessionHistoryStore",
    "SessionManager",
]
