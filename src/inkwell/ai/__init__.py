"""Model transport, retry policy, sessions and tool wiring."""

from .client import ClientSettings, OpenAITransport
from .retry import RetryConfig, RetryExhaustedError, RetryingModelTransport, StreamCancelledError, StreamingResponse
from .session import Session, SessionContext
from .types import ConversationTurn, ModelRequest, ModelResponse, ModelTransport, ToolCallOutcome

__all__ = [
    "ClientSettings",
    "OpenAITransport",
    "RetryConfig",
    "RetryExhaustedError",
    "RetryingModelTransport",
    "StreamCancelledError",
    "StreamingResponse",
    "Session",
    "SessionContext",
    "ConversationTurn",
    "ModelRequest",
    "ModelResponse",
    "ModelTransport",
    "ToolCallOutcome",
]
