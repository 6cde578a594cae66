"""Retry-with-backoff wrapper around a model transport.

``RetryingModelTransport`` wraps anything implementing
:class:`~inkwell.ai.types.ModelTransport`. A failed call is retried with
exponential backoff (``initial_backoff_delay * 2**n`` seconds before attempt
``n + 2``) until ``max_retries`` attempts have been made, after which
:class:`RetryExhaustedError` is raised.

The streaming variant retries a stream as a whole. Chunks already delivered
from a failed attempt stay delivered; the next attempt regenerates from
scratch, which is announced through ``on_restart`` and a
:class:`~inkwell.ai.events.StreamRestarted` event.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from tenacity import AsyncRetrying, RetryCallState, RetryError, stop_after_attempt, wait_exponential

from .events import EventBus, ModelRetryScheduled, StreamRestarted
from .types import ChunkCallback, ModelRequest, ModelResponse, ModelTransport, StreamingModelTransport

if TYPE_CHECKING:  # pragma: no cover
    from ..services.settings import Settings

__all__ = [
    "RetryConfig",
    "RetryExhaustedError",
    "StreamCancelledError",
    "StreamingResponse",
    "RetryingModelTransport",
]

LOGGER = logging.getLogger(__name__)

SleepFunction = Callable[[float], Awaitable[None]]
RestartCallback = Callable[[int], Any]


@dataclass(slots=True, frozen=True)
class RetryConfig:
    """Attempt budget and backoff base.

    Attributes:
        max_retries: Total attempts per call, clamped to at least 1.
        initial_backoff_delay: Seconds to wait after the first failure.
    """

    max_retries: int = 3
    initial_backoff_delay: float = 1.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "max_retries", max(1, int(self.max_retries)))
        object.__setattr__(self, "initial_backoff_delay", max(0.0, float(self.initial_backoff_delay)))

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryConfig:
        return cls(max_retries=settings.max_retries, initial_backoff_delay=settings.initial_backoff_delay)


class RetryExhaustedError(Exception):
    """Raised when every attempt of a model call failed."""

    def __init__(self, attempts: int, last_error: BaseException | None) -> None:
        self.attempts = attempts
        self.last_error = last_error
        detail = f": {last_error}" if last_error is not None else ""
        super().__init__(f"Model request failed after {attempts} attempt(s){detail}")


class StreamCancelledError(Exception):
    """Raised by a streaming handle's ``complete`` after ``cancel()``."""


class StreamingResponse:
    """Handle for an in-flight streamed model call.

    Await :attr:`complete` for the final :class:`ModelResponse`. ``cancel()``
    stops chunk delivery immediately and prevents further attempts.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._started = False
        self._task: asyncio.Task[ModelResponse] | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def complete(self) -> asyncio.Task[ModelResponse]:
        if self._task is None:  # pragma: no cover - attached right after construction
            raise RuntimeError("Streaming response has not started")
        return self._task

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        # Before its first step the task checks the flag itself.
        if self._started and self._task is not None and not self._task.done():
            self._task.cancel()

    def _attach(self, task: asyncio.Task[ModelResponse]) -> None:
        self._task = task

    def __await__(self):
        return self.complete.__await__()


class RetryingModelTransport:
    """Model transport decorator adding bounded retries with exponential backoff.

    Example:
        transport = RetryingModelTransport(OpenAITransport(settings), RetryConfig(max_retries=3))
        response = await transport.generate(request)
    """

    def __init__(
        self,
        transport: ModelTransport,
        config: RetryConfig | None = None,
        *,
        event_bus: EventBus | None = None,
        sleep: SleepFunction | None = None,
    ) -> None:
        self._transport = transport
        self._config = config or RetryConfig()
        self._event_bus = event_bus
        self._sleep = sleep or asyncio.sleep

    @property
    def transport(self) -> ModelTransport:
        return self._transport

    @property
    def config(self) -> RetryConfig:
        return self._config

    @property
    def supports_streaming(self) -> bool:
        return isinstance(self._transport, StreamingModelTransport)

    async def generate(self, request: ModelRequest) -> ModelResponse:
        """Call the wrapped transport, retrying failures."""
        try:
            return await self._retrying(request)(self._transport.generate, request)
        except RetryError as exc:
            raise self._exhausted(exc) from exc.last_attempt.exception()

    def generate_streaming(
        self,
        request: ModelRequest,
        on_chunk: ChunkCallback,
        *,
        on_restart: RestartCallback | None = None,
    ) -> StreamingResponse:
        """Start a streamed call and return its handle.

        Transports without ``generate_streaming`` are called through
        ``generate`` and their text is delivered as a single chunk.
        """
        handle = StreamingResponse()
        loop = asyncio.get_running_loop()
        handle._attach(loop.create_task(self._run_stream(request, on_chunk, on_restart, handle)))
        return handle

    async def _run_stream(
        self,
        request: ModelRequest,
        on_chunk: ChunkCallback,
        on_restart: RestartCallback | None,
        handle: StreamingResponse,
    ) -> ModelResponse:
        handle._started = True
        if handle.cancelled:
            raise StreamCancelledError("Stream cancelled before it started")
        stream = self._transport.generate_streaming if self.supports_streaming else None

        def forward(chunk: str) -> None:
            if handle.cancelled or not chunk:
                return
            on_chunk(chunk)

        response: ModelResponse | None = None
        try:
            async for attempt in self._retrying(request, cancelled=lambda: handle.cancelled):
                with attempt:
                    number = attempt.retry_state.attempt_number
                    if number > 1:
                        await self._announce_restart(request, number, on_restart)
                    if stream is not None:
                        response = await stream(request, forward)
                    else:
                        response = await self._transport.generate(request)
                        forward(response.text)
        except RetryError as exc:
            if handle.cancelled:
                raise StreamCancelledError("Stream cancelled") from exc.last_attempt.exception()
            raise self._exhausted(exc) from exc.last_attempt.exception()
        except asyncio.CancelledError:
            if handle.cancelled:
                raise StreamCancelledError("Stream cancelled") from None
            raise
        if response is None:  # pragma: no cover - tenacity always runs one attempt
            raise StreamCancelledError("Stream cancelled")
        return response

    def _retrying(self, request: ModelRequest, *, cancelled: Callable[[], bool] | None = None) -> AsyncRetrying:
        stop = stop_after_attempt(self._config.max_retries)
        if cancelled is not None:
            stop = stop | (lambda retry_state: cancelled())
        return AsyncRetrying(
            stop=stop,
            wait=wait_exponential(multiplier=self._config.initial_backoff_delay, exp_base=2),
            sleep=self._sleep,
            before_sleep=lambda retry_state: self._before_sleep(request, retry_state),
            reraise=False,
        )

    def _before_sleep(self, request: ModelRequest, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome is not None else None
        delay = retry_state.next_action.sleep if retry_state.next_action is not None else 0.0
        attempt = retry_state.attempt_number
        LOGGER.warning(
            "Model request attempt %d/%d failed (%s); retrying in %.2fs",
            attempt,
            self._config.max_retries,
            error,
            delay,
        )
        if self._event_bus is not None:
            self._event_bus.publish(
                ModelRetryScheduled(turn_id=request.turn_id, attempt=attempt, delay=delay, error=str(error))
            )

    async def _announce_restart(self, request: ModelRequest, attempt: int, on_restart: RestartCallback | None) -> None:
        LOGGER.debug("Restarting stream for turn %s (attempt %d)", request.turn_id or "-", attempt)
        if self._event_bus is not None:
            self._event_bus.publish(StreamRestarted(turn_id=request.turn_id, attempt=attempt))
        if on_restart is not None:
            outcome = on_restart(attempt)
            if inspect.isawaitable(outcome):
                await outcome

    def _exhausted(self, exc: RetryError) -> RetryExhaustedError:
        last_attempt = exc.last_attempt
        error = last_attempt.exception()
        LOGGER.error("Model request failed after %d attempt(s): %s", last_attempt.attempt_number, error)
        return RetryExhaustedError(last_attempt.attempt_number, error)
