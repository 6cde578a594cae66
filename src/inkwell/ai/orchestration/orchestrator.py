"""Agent turn orchestrator.

Drives one user message through as many model/tool rounds as the model asks
for, until it produces a final answer, the turn is cancelled, or the round
ceiling is hit.

Per turn the session history grows in causal order:

1. the user turn, committed before the first model call;
2. for every round that requests tools, the assistant turn carrying the
   calls followed by one synthetic ``tool`` turn with the formatted results;
3. the final assistant turn, only when the turn completes.

Each commit is pushed to the history store immediately, so a turn that fails
or is cancelled half way still leaves a consistent transcript.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Sequence

from ..events import (
    EventBus,
    NoticePosted,
    StreamChunk,
    ToolExecuted,
    TurnCanceled,
    TurnCompleted,
    TurnFailed,
    TurnStarted,
)
from ..retry import RetryConfig, RetryExhaustedError, RetryingModelTransport, StreamCancelledError, StreamingResponse
from ..session import Session
from ..tools.executor import ToolExecutionEngine, format_tool_result_content
from ..tools.registry import ToolRegistry
from ..tools.types import ToolResult, ToolSpec
from ..types import ConversationTurn, ModelRequest, ModelResponse, ModelTransport, ToolCallOutcome
from ...utils.logging import bind_turn
from .context import DocumentContextBuilder
from .history import SessionHistoryStore

__all__ = [
    "DEFAULT_SYSTEM_INSTRUCTION",
    "AgentTurnOrchestrator",
    "OrchestratorConfig",
    "TurnErrorCode",
    "TurnInProgressError",
    "TurnOutcome",
    "TurnState",
    "TurnStatus",
    "format_tool_results",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_SYSTEM_INSTRUCTION = (
    "You are a writing assistant working inside the user's document workspace. "
    "Use the available tools to look up or change documents when that helps answer the request, "
    "then reply to the user concisely."
)
EMPTY_RESPONSE_NOTICE = "The model returned an empty response. Try rephrasing your message."
_SKIPPED_ERROR = "Skipped: an earlier tool call in this batch failed"


class TurnStatus(str, Enum):
    COMPLETED = "completed"
    EMPTY_RESPONSE = "empty_response"
    FAILED = "failed"
    CANCELED = "canceled"
    MAX_ROUNDS_EXCEEDED = "max_rounds_exceeded"


class TurnState(str, Enum):
    IDLE = "idle"
    MODEL_PENDING = "model_pending"
    TOOL_PENDING = "tool_pending"
    FOLLOWUP_PENDING = "followup_pending"
    TERMINAL = "terminal"
    FAILED = "failed"


class TurnErrorCode(str, Enum):
    RETRY_EXHAUSTED = "retry_exhausted"
    EMPTY_RESPONSE = "empty_response"
    MAX_ROUNDS_EXCEEDED = "max_rounds_exceeded"
    UNEXPECTED_ERROR = "unexpected_error"


class TurnInProgressError(RuntimeError):
    """Raised when a turn is started while another one is still running."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"A turn is already in progress for session '{session_id}'")


@dataclass(slots=True, frozen=True)
class OrchestratorConfig:
    """Configuration for the orchestrator.

    Attributes:
        max_rounds: Model calls allowed per turn before giving up.
        streaming_enabled: Prefer the transport's streaming call when it has one.
        system_instruction: Base instruction sent with every request.
    """

    max_rounds: int = 10
    streaming_enabled: bool = True
    system_instruction: str = DEFAULT_SYSTEM_INSTRUCTION

    def __post_init__(self) -> None:
        if self.max_rounds < 1:
            raise ValueError("max_rounds must be at least 1")


@dataclass(slots=True, frozen=True)
class TurnOutcome:
    """How a turn ended.

    ``tool_results`` holds every executed call in order; ``text`` is the final
    answer and is only non-empty for completed turns.
    """

    turn_id: str
    status: TurnStatus
    text: str = ""
    rounds: int = 0
    tool_results: tuple[ToolCallOutcome, ...] = ()
    error: str | None = None
    error_code: TurnErrorCode | None = None

    @property
    def ok(self) -> bool:
        return self.status is TurnStatus.COMPLETED


@dataclass(slots=True)
class _TurnProgress:
    turn_id: str
    rounds: int = 0
    outcomes: list[ToolCallOutcome] = field(default_factory=list)

    def finish(
        self,
        status: TurnStatus,
        *,
        text: str = "",
        error: str | None = None,
        error_code: TurnErrorCode | None = None,
    ) -> TurnOutcome:
        return TurnOutcome(
            turn_id=self.turn_id,
            status=status,
            text=text,
            rounds=self.rounds,
            tool_results=tuple(self.outcomes),
            error=error,
            error_code=error_code,
        )


def format_tool_results(outcomes: Sequence[ToolCallOutcome]) -> str:
    """Render a round's results as the text of the synthetic tool turn."""
    lines = ["Tool results:"]
    for index, outcome in enumerate(outcomes, start=1):
        call, result = outcome.call, outcome.result
        label = f"[{index}] {call.name}" + (f" (call {call.call_id})" if call.call_id else "")
        if result.success:
            lines.append(f"{label}: success")
            lines.append(format_tool_result_content(result.data))
        else:
            code = f" [{result.error_code.value}]" if result.error_code else ""
            lines.append(f"{label}: error{code}")
            lines.append(result.error or "")
    return "\n".join(lines)


class AgentTurnOrchestrator:
    """Runs turns for one session.

    Example:
        orchestrator = AgentTurnOrchestrator(session, transport, engine)
        outcome = await orchestrator.run_turn("List my files")
        if outcome.ok:
            print(outcome.text)
    """

    def __init__(
        self,
        session: Session,
        transport: ModelTransport,
        engine: ToolExecutionEngine,
        registry: ToolRegistry | None = None,
        *,
        history_store: SessionHistoryStore | None = None,
        config: OrchestratorConfig | None = None,
        event_bus: EventBus | None = None,
        context_builder: DocumentContextBuilder | None = None,
    ) -> None:
        self._session = session
        self._engine = engine
        self._registry = registry or engine.registry
        self._history_store = history_store
        self._config = config or OrchestratorConfig()
        self._bus = event_bus
        self._context_builder = context_builder
        if not isinstance(transport, RetryingModelTransport):
            # A bare transport gets a single attempt but the same error and cancellation surface.
            transport = RetryingModelTransport(transport, RetryConfig(max_retries=1), event_bus=event_bus)
        self._transport = transport
        self._state = TurnState.IDLE
        self._executing = False
        self._cancel_requested = False
        self._stream: StreamingResponse | None = None
        self._turn_id: str | None = None
        self._partial: list[str] = []

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------
    @property
    def session(self) -> Session:
        return self._session

    @property
    def config(self) -> OrchestratorConfig:
        return self._config

    @property
    def state(self) -> TurnState:
        return self._state

    @property
    def is_executing(self) -> bool:
        return self._executing

    @property
    def current_turn_id(self) -> str | None:
        return self._turn_id if self._executing else None

    @property
    def partial_text(self) -> str:
        """Streamed text of the current attempt (cleared on stream restart)."""
        return "".join(self._partial)

    # ------------------------------------------------------------------
    # Turn lifecycle
    # ------------------------------------------------------------------
    def cancel(self) -> bool:
        """Request cancellation of the running turn.

        Returns False when no turn is running. A tool that is already executing
        runs to completion; the next stage is skipped.
        """
        if not self._executing:
            return False
        self._cancel_requested = True
        if self._stream is not None:
            self._stream.cancel()
        LOGGER.debug("Cancellation requested for turn %s", self._turn_id)
        return True

    async def run_turn(self, message: str) -> TurnOutcome:
        """Process one user message to completion.

        Raises:
            TurnInProgressError: If a turn is already running for this session.
        """
        if self._executing:
            raise TurnInProgressError(self._session.session_id)
        turn_id = f"turn-{uuid.uuid4().hex[:8]}"
        self._executing = True
        self._cancel_requested = False
        self._turn_id = turn_id
        self._partial = []
        progress = _TurnProgress(turn_id)
        LOGGER.debug("Turn %s started for session %s", turn_id, self._session.session_id)
        self._publish(TurnStarted(turn_id=turn_id, session_id=self._session.session_id, prompt=message))
        try:
            with bind_turn(turn_id):
                outcome = await self._run(message, progress)
        except asyncio.CancelledError:
            self._state = TurnState.IDLE
            self._publish(TurnCanceled(turn_id=turn_id))
            raise
        except Exception as exc:
            LOGGER.exception("Turn %s failed with exception", turn_id)
            outcome = progress.finish(
                TurnStatus.FAILED,
                error=f"Unexpected error: {exc}",
                error_code=TurnErrorCode.UNEXPECTED_ERROR,
            )
        finally:
            self._stream = None
            self._executing = False
        self._state = _final_state(outcome.status)
        self._publish_outcome(outcome)
        LOGGER.debug("Turn %s finished: %s after %d round(s)", turn_id, outcome.status.value, outcome.rounds)
        return outcome

    async def _run(self, message: str, progress: _TurnProgress) -> TurnOutcome:
        context = self._session.context
        prior_history = self._session.history
        await self._commit(ConversationTurn.user(message, turn_id=progress.turn_id))

        tools: tuple[ToolSpec, ...] = tuple(tool.spec for tool in self._registry.get_enabled_tools(context))
        system_instruction = await self._build_system_instruction()
        history = prior_history
        user_text = message

        while True:
            if self._cancel_requested:
                return self._canceled(progress)
            progress.rounds += 1
            self._state = TurnState.MODEL_PENDING if progress.rounds == 1 else TurnState.FOLLOWUP_PENDING
            request = ModelRequest(
                system_instruction=system_instruction,
                history=history,
                user_text=user_text,
                tools=tools,
                turn_id=progress.turn_id,
                metadata={"round": progress.rounds},
            )
            try:
                response = await self._call_model(request)
            except StreamCancelledError:
                return self._canceled(progress)
            except RetryExhaustedError as exc:
                return progress.finish(
                    TurnStatus.FAILED,
                    error=f"Model request failed after {exc.attempts} attempt(s): {exc.last_error}",
                    error_code=TurnErrorCode.RETRY_EXHAUSTED,
                )
            if self._cancel_requested:
                return self._canceled(progress)

            if response.is_empty:
                LOGGER.warning("Turn %s: model returned an empty response", progress.turn_id)
                self._publish(NoticePosted(turn_id=progress.turn_id, message=EMPTY_RESPONSE_NOTICE, level="warning"))
                return progress.finish(
                    TurnStatus.EMPTY_RESPONSE,
                    error=EMPTY_RESPONSE_NOTICE,
                    error_code=TurnErrorCode.EMPTY_RESPONSE,
                )
            if not response.has_tool_calls:
                await self._commit(ConversationTurn.assistant(response.text, turn_id=progress.turn_id))
                return progress.finish(TurnStatus.COMPLETED, text=response.text)

            if progress.rounds >= self._config.max_rounds:
                LOGGER.warning("Turn %s reached max rounds (%d)", progress.turn_id, self._config.max_rounds)
                return progress.finish(
                    TurnStatus.MAX_ROUNDS_EXCEEDED,
                    error=f"Stopped after {self._config.max_rounds} rounds of tool calls",
                    error_code=TurnErrorCode.MAX_ROUNDS_EXCEEDED,
                )

            self._state = TurnState.TOOL_PENDING
            await self._commit(
                ConversationTurn.assistant(response.text, response.tool_calls, turn_id=progress.turn_id)
            )
            outcomes = await self._execute_tools(response, progress)
            await self._commit(
                ConversationTurn.tool_turn(
                    format_tool_results(outcomes),
                    outcomes,
                    turn_id=progress.turn_id,
                    round=progress.rounds,
                )
            )
            history = self._session.history
            user_text = ""

    async def _call_model(self, request: ModelRequest) -> ModelResponse:
        transport = self._transport
        if not (self._config.streaming_enabled and transport.supports_streaming):
            return await transport.generate(request)
        self._partial = []
        handle = transport.generate_streaming(request, self._on_chunk, on_restart=self._on_stream_restart)
        self._stream = handle
        try:
            return await handle.complete
        finally:
            self._stream = None

    async def _execute_tools(self, response: ModelResponse, progress: _TurnProgress) -> list[ToolCallOutcome]:
        calls = response.tool_calls
        results = await self._engine.execute_tool_calls(calls, self._session)
        executed: list[ToolCallOutcome] = []
        for call, result in zip(calls, results):
            outcome = ToolCallOutcome(call=call, result=result)
            executed.append(outcome)
            self._publish(
                ToolExecuted(
                    turn_id=progress.turn_id,
                    tool_name=call.name,
                    call_id=call.call_id,
                    success=result.success,
                    error=result.error or "",
                    round=progress.rounds,
                )
            )
        progress.outcomes.extend(executed)
        # Skipped calls still get an entry so every issued call has an answer in the transcript.
        skipped = [
            ToolCallOutcome(call=call, result=ToolResult.failure(_SKIPPED_ERROR)) for call in calls[len(results):]
        ]
        return executed + skipped

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    async def _build_system_instruction(self) -> str:
        instruction = self._config.system_instruction
        if self._context_builder is None:
            return instruction
        # Store reads may hit the disk.
        document_context = await asyncio.to_thread(self._context_builder.build, self._session.context)
        if not document_context:
            return instruction
        return f"{instruction}\n\n{document_context}"

    async def _commit(self, turn: ConversationTurn) -> None:
        self._session.append_turn(turn)
        if self._history_store is not None:
            await self._history_store.append_turn(self._session, turn)

    def _canceled(self, progress: _TurnProgress) -> TurnOutcome:
        LOGGER.info("Turn %s canceled after %d round(s)", progress.turn_id, progress.rounds)
        return progress.finish(TurnStatus.CANCELED)

    def _on_chunk(self, chunk: str) -> None:
        self._partial.append(chunk)
        if self._turn_id is not None:
            self._publish(StreamChunk(turn_id=self._turn_id, content=chunk))

    def _on_stream_restart(self, attempt: int) -> None:
        LOGGER.debug("Discarding %d streamed char(s) before attempt %d", len(self.partial_text), attempt)
        self._partial = []

    def _publish(self, event: object) -> None:
        if self._bus is not None:
            self._bus.publish(event)

    def _publish_outcome(self, outcome: TurnOutcome) -> None:
        if outcome.status in (TurnStatus.COMPLETED, TurnStatus.EMPTY_RESPONSE):
            self._publish(
                TurnCompleted(
                    turn_id=outcome.turn_id,
                    response_text=outcome.text,
                    rounds=outcome.rounds,
                    tool_count=len(outcome.tool_results),
                )
            )
        elif outcome.status is TurnStatus.CANCELED:
            self._publish(TurnCanceled(turn_id=outcome.turn_id))
        else:
            code = outcome.error_code.value if outcome.error_code else outcome.status.value
            self._publish(TurnFailed(turn_id=outcome.turn_id, error=outcome.error or "", code=code))


def _final_state(status: TurnStatus) -> TurnState:
    if status is TurnStatus.CANCELED:
        return TurnState.IDLE
    if status in (TurnStatus.FAILED, TurnStatus.MAX_ROUNDS_EXCEEDED):
        return TurnState.FAILED
    return TurnState.TERMINAL
