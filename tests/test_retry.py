"""Tests for ai/retry.py."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from inkwell.ai.events import EventBus, ModelRetryScheduled, StreamRestarted
from inkwell.ai.retry import (
    RetryConfig,
    RetryExhaustedError,
    RetryingModelTransport,
    StreamCancelledError,
)
from inkwell.ai.types import ChunkCallback, ModelRequest, ModelResponse
from inkwell.services.settings import Settings


# -----------------------------------------------------------------------------
# Mock transports
# -----------------------------------------------------------------------------


class FlakyTransport:
    """Fails the first ``failures`` calls, then answers with ``text``."""

    def __init__(self, failures: int, text: str = "ok") -> None:
        self.failures = failures
        self.text = text
        self.calls = 0

    async def generate(self, request: ModelRequest) -> ModelResponse:
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError(f"network down ({self.calls})")
        return ModelResponse(text=self.text)


class FlakyStreamingTransport(FlakyTransport):
    """Streams ``chunks``; failing attempts emit a partial chunk before raising."""

    def __init__(self, failures: int, chunks: list[str]) -> None:
        super().__init__(failures, "".join(chunks))
        self.chunks = chunks

    async def generate_streaming(self, request: ModelRequest, on_chunk: ChunkCallback) -> ModelResponse:
        self.calls += 1
        if self.calls <= self.failures:
            on_chunk("partial")
            raise ConnectionError("stream dropped")
        for chunk in self.chunks:
            on_chunk(chunk)
        return ModelResponse(text=self.text)


class HangingStreamingTransport:
    """Emits one chunk and then waits forever."""

    def __init__(self) -> None:
        self.started = asyncio.Event()

    async def generate(self, request: ModelRequest) -> ModelResponse:  # pragma: no cover - unused
        return ModelResponse(text="unused")

    async def generate_streaming(self, request: ModelRequest, on_chunk: ChunkCallback) -> ModelResponse:
        on_chunk("Hel")
        self.started.set()
        await asyncio.Event().wait()
        return ModelResponse(text="never")


def make_request() -> ModelRequest:
    return ModelRequest(system_instruction="system", user_text="hello", turn_id="turn-1")


# -----------------------------------------------------------------------------
# Tests: config
# -----------------------------------------------------------------------------


class TestRetryConfig:
    def test_defaults(self) -> None:
        config = RetryConfig()
        assert config.max_retries == 3
        assert config.initial_backoff_delay == 1.0

    def test_clamps_invalid_values(self) -> None:
        config = RetryConfig(max_retries=0, initial_backoff_delay=-5)
        assert config.max_retries == 1
        assert config.initial_backoff_delay == 0.0

    def test_from_settings(self) -> None:
        config = RetryConfig.from_settings(Settings(max_retries=5, initial_backoff_delay=0.25))
        assert config == RetryConfig(max_retries=5, initial_backoff_delay=0.25)


# -----------------------------------------------------------------------------
# Tests: non-streaming
# -----------------------------------------------------------------------------


class TestGenerate:
    @pytest.mark.asyncio
    async def test_success_without_retry(self, recording_sleep: Any) -> None:
        transport = FlakyTransport(failures=0)
        retrying = RetryingModelTransport(transport, RetryConfig(max_retries=3), sleep=recording_sleep)

        response = await retrying.generate(make_request())

        assert response.text == "ok"
        assert transport.calls == 1
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_backoff_doubles_between_attempts(self, recording_sleep: Any) -> None:
        transport = FlakyTransport(failures=2)
        retrying = RetryingModelTransport(
            transport, RetryConfig(max_retries=3, initial_backoff_delay=1.0), sleep=recording_sleep
        )

        response = await retrying.generate(make_request())

        assert response.text == "ok"
        assert transport.calls == 3
        assert recording_sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_exhaustion_reports_attempts_and_last_error(self, recording_sleep: Any) -> None:
        transport = FlakyTransport(failures=10)
        retrying = RetryingModelTransport(transport, RetryConfig(max_retries=2), sleep=recording_sleep)

        with pytest.raises(RetryExhaustedError) as exc_info:
            await retrying.generate(make_request())

        assert transport.calls == 2
        assert exc_info.value.attempts == 2
        assert isinstance(exc_info.value.last_error, ConnectionError)
        assert "network down (2)" in str(exc_info.value)
        assert recording_sleep.delays == [1.0]

    @pytest.mark.asyncio
    async def test_single_attempt_never_sleeps(self, recording_sleep: Any) -> None:
        transport = FlakyTransport(failures=1)
        retrying = RetryingModelTransport(transport, RetryConfig(max_retries=1), sleep=recording_sleep)

        with pytest.raises(RetryExhaustedError):
            await retrying.generate(make_request())

        assert transport.calls == 1
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_retry_events_are_published(self, recording_sleep: Any) -> None:
        bus: EventBus = EventBus()
        scheduled: list[ModelRetryScheduled] = []
        bus.subscribe(ModelRetryScheduled, scheduled.append)
        retrying = RetryingModelTransport(
            FlakyTransport(failures=2), RetryConfig(max_retries=3), event_bus=bus, sleep=recording_sleep
        )

        await retrying.generate(make_request())

        assert [(event.attempt, event.delay) for event in scheduled] == [(1, 1.0), (2, 2.0)]
        assert all(event.turn_id == "turn-1" for event in scheduled)
        assert "network down" in scheduled[0].error


# -----------------------------------------------------------------------------
# Tests: streaming
# -----------------------------------------------------------------------------


class TestGenerateStreaming:
    @pytest.mark.asyncio
    async def test_streams_chunks(self, recording_sleep: Any) -> None:
        transport = FlakyStreamingTransport(failures=0, chunks=["Hel", "lo"])
        retrying = RetryingModelTransport(transport, sleep=recording_sleep)
        chunks: list[str] = []

        handle = retrying.generate_streaming(make_request(), chunks.append)
        response = await handle.complete

        assert chunks == ["Hel", "lo"]
        assert response.text == "Hello"
        assert retrying.supports_streaming

    @pytest.mark.asyncio
    async def test_restart_after_failure(self, recording_sleep: Any) -> None:
        bus: EventBus = EventBus()
        restarted: list[StreamRestarted] = []
        bus.subscribe(StreamRestarted, restarted.append)
        transport = FlakyStreamingTransport(failures=1, chunks=["Hi"])
        retrying = RetryingModelTransport(transport, RetryConfig(max_retries=3), event_bus=bus, sleep=recording_sleep)
        chunks: list[str] = []
        restarts: list[int] = []

        response = await retrying.generate_streaming(make_request(), chunks.append, on_restart=restarts.append)

        assert response.text == "Hi"
        assert chunks == ["partial", "Hi"]
        assert restarts == [2]
        assert [event.attempt for event in restarted] == [2]
        assert recording_sleep.delays == [1.0]

    @pytest.mark.asyncio
    async def test_streaming_exhaustion(self, recording_sleep: Any) -> None:
        transport = FlakyStreamingTransport(failures=5, chunks=["never"])
        retrying = RetryingModelTransport(transport, RetryConfig(max_retries=2), sleep=recording_sleep)

        handle = retrying.generate_streaming(make_request(), lambda chunk: None)
        with pytest.raises(RetryExhaustedError) as exc_info:
            await handle.complete

        assert exc_info.value.attempts == 2
        assert transport.calls == 2

    @pytest.mark.asyncio
    async def test_falls_back_to_generate(self, recording_sleep: Any) -> None:
        transport = FlakyTransport(failures=0, text="whole answer")
        retrying = RetryingModelTransport(transport, sleep=recording_sleep)
        chunks: list[str] = []

        response = await retrying.generate_streaming(make_request(), chunks.append)

        assert not retrying.supports_streaming
        assert chunks == ["whole answer"]
        assert response.text == "whole answer"

    @pytest.mark.asyncio
    async def test_cancel_stops_stream(self, recording_sleep: Any) -> None:
        transport = HangingStreamingTransport()
        retrying = RetryingModelTransport(transport, sleep=recording_sleep)
        chunks: list[str] = []

        handle = retrying.generate_streaming(make_request(), chunks.append)
        await transport.started.wait()
        handle.cancel()

        with pytest.raises(StreamCancelledError):
            await handle.complete
        assert handle.cancelled
        assert chunks == ["Hel"]

    @pytest.mark.asyncio
    async def test_cancel_is_idempotent(self, recording_sleep: Any) -> None:
        transport = HangingStreamingTransport()
        retrying = RetryingModelTransport(transport, sleep=recording_sleep)

        handle = retrying.generate_streaming(make_request(), lambda chunk: None)
        await transport.started.wait()
        handle.cancel()
        handle.cancel()

        with pytest.raises(StreamCancelledError):
            await handle

    @pytest.mark.asyncio
    async def test_cancel_before_stream_starts(self, recording_sleep: Any) -> None:
        transport = HangingStreamingTransport()
        retrying = RetryingModelTransport(transport, sleep=recording_sleep)
        chunks: list[str] = []

        handle = retrying.generate_streaming(make_request(), chunks.append)
        handle.cancel()

        with pytest.raises(StreamCancelledError):
            await handle.complete
        assert not transport.started.is_set()
        assert chunks == []
