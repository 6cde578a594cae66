"""Model transport for OpenAI-compatible chat completion endpoints.

The transport converts a :class:`ModelRequest` into chat messages and tool
definitions, and parses the completion back into a :class:`ModelResponse`.
It makes exactly one attempt per call; retries belong to
:class:`~inkwell.ai.retry.RetryingModelTransport`.
"""

from __future__ import annotations

import inspect
import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Mapping

import httpx
from openai import AsyncOpenAI
from openai.types.chat import ChatCompletionMessageParam

from .tools.executor import format_tool_result_content
from .tools.types import ToolCall
from .types import ChunkCallback, ConversationTurn, ModelRequest, ModelResponse

if TYPE_CHECKING:  # pragma: no cover
    from ..services.settings import Settings

__all__ = ["ClientSettings", "OpenAITransport", "build_chat_messages"]

LOGGER = logging.getLogger(__name__)
_CONNECT_TIMEOUT = 10.0


@dataclass(slots=True)
class ClientSettings:
    """Subset of settings required to configure the transport."""

    base_url: str
    api_key: str
    model: str
    organization: str | None = None
    request_timeout: float | None = 90.0
    temperature: float | None = 0.2
    default_headers: Mapping[str, str] | None = None
    debug_logging: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> ClientSettings:
        return cls(
            base_url=settings.base_url,
            api_key=settings.api_key,
            model=settings.model,
            organization=settings.organization,
            request_timeout=settings.request_timeout,
            temperature=settings.temperature,
            default_headers=dict(settings.default_headers) or None,
            debug_logging=settings.debug_logging,
        )


class OpenAITransport:
    """Single-attempt model transport backed by ``openai.AsyncOpenAI``."""

    def __init__(self, settings: ClientSettings, *, client: AsyncOpenAI | None = None) -> None:
        self._settings = settings
        self._client = client or self._build_client(settings)

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def generate(self, request: ModelRequest) -> ModelResponse:
        payload = self._build_payload(request)
        LOGGER.debug("Chat completion via %s with %d message(s)", self._settings.model, len(payload["messages"]))
        completion = await self._client.chat.completions.create(**payload)
        return _parse_completion(completion)

    async def generate_streaming(self, request: ModelRequest, on_chunk: ChunkCallback) -> ModelResponse:
        payload = self._build_payload(request)
        LOGGER.debug(
            "Streamed chat completion via %s with %d message(s)", self._settings.model, len(payload["messages"])
        )
        async with self._client.chat.completions.stream(**payload) as stream:
            async for event in stream:
                if getattr(event, "type", None) != "content.delta":
                    continue
                delta = getattr(event, "delta", None)
                if delta:
                    outcome = on_chunk(str(delta))
                    if inspect.isawaitable(outcome):
                        await outcome
            completion = await stream.get_final_completion()
        return _parse_completion(completion)

    async def aclose(self) -> None:
        """Close the underlying OpenAI client to release network resources."""
        close = getattr(self._client, "close", None)
        if close is None:
            return
        result = close()
        if inspect.isawaitable(result):
            await result

    def _build_payload(self, request: ModelRequest) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self._settings.model,
            "messages": build_chat_messages(request),
        }
        if request.tools:
            payload["tools"] = [spec.to_openai_tool() for spec in request.tools]
        if self._settings.temperature is not None:
            payload["temperature"] = self._settings.temperature
        if self._settings.debug_logging:
            self._log_prompt_payload(payload)
        return payload

    def _build_client(self, settings: ClientSettings) -> AsyncOpenAI:
        headers = dict(settings.default_headers) if settings.default_headers else None
        timeout = (
            httpx.Timeout(settings.request_timeout, connect=min(_CONNECT_TIMEOUT, settings.request_timeout))
            if settings.request_timeout
            else None
        )
        return AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url,
            organization=settings.organization,
            timeout=timeout,
            max_retries=0,
            default_headers=headers,
        )

    def _log_prompt_payload(self, payload: Mapping[str, Any]) -> None:
        try:
            serialized = json.dumps(payload, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("Model prompt payload (unserializable): %s", payload)
        else:
            LOGGER.debug("Model prompt payload:\n%s", serialized)


def build_chat_messages(request: ModelRequest) -> List[ChatCompletionMessageParam]:
    """Translate a request into the chat completions message list."""
    messages: List[Dict[str, Any]] = []
    if request.system_instruction:
        messages.append({"role": "system", "content": request.system_instruction})
    for turn in request.history:
        messages.extend(_turn_to_messages(turn))
    if request.user_text:
        messages.append({"role": "user", "content": request.user_text})
    return messages  # type: ignore[return-value]


def _turn_to_messages(turn: ConversationTurn) -> List[Dict[str, Any]]:
    if turn.role == "assistant":
        message: Dict[str, Any] = {"role": "assistant", "content": turn.content or None}
        calls = [call for call in turn.tool_calls if call.call_id]
        if calls:
            message["tool_calls"] = [
                {
                    "id": call.call_id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": call.arguments_json()},
                }
                for call in calls
            ]
        elif not turn.content:
            return []
        return [message]
    if turn.role == "tool":
        linked = [outcome for outcome in turn.tool_results if outcome.call.call_id]
        if not linked or len(linked) != len(turn.tool_results):
            # Calls without ids cannot be paired with tool messages.
            return [{"role": "user", "content": turn.content}]
        return [
            {
                "role": "tool",
                "tool_call_id": outcome.call.call_id,
                "content": (
                    format_tool_result_content(outcome.result.data)
                    if outcome.result.success
                    else f"Error: {outcome.result.error}"
                ),
            }
            for outcome in linked
        ]
    return [{"role": turn.role, "content": turn.content}]


def _parse_completion(completion: Any) -> ModelResponse:
    choices = getattr(completion, "choices", None) or []
    if not choices:
        return ModelResponse()
    choice = choices[0]
    message = getattr(choice, "message", None)
    text = getattr(message, "content", None) or ""
    calls: list[ToolCall] = []
    for index, raw in enumerate(getattr(message, "tool_calls", None) or ()):
        function = getattr(raw, "function", None)
        name = getattr(function, "name", None)
        if not name:
            continue
        call_id = getattr(raw, "id", None) or f"call_{index}"
        calls.append(ToolCall.from_json(name, getattr(function, "arguments", None), call_id=call_id))
    return ModelResponse(
        text=text,
        tool_calls=tuple(calls),
        finish_reason=getattr(choice, "finish_reason", None),
    )
