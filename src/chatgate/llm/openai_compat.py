"""Client for OpenAI-compatible chat completion providers."""

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx
import openai
from openai import AsyncOpenAI

from chatgate.llm.client import (
    TOOL_CHOICE_MODES,
    CompletionOptions,
    CompletionResponse,
    Message,
    StreamChunk,
    ToolCall,
    ToolCallDelta,
)
from chatgate.llm.errors import UpstreamError, UpstreamErrorCode, map_upstream_error

logger = logging.getLogger(__name__)


class OpenAICompletionStream:
    """Normalizes an OpenAI SDK chunk stream into StreamChunk objects.

    The stream is single-use: it can be iterated once and cannot be
    restarted. Provider and transport failures raised while reading are
    re-raised as :class:`UpstreamError`.
    """

    def __init__(self, stream: Any) -> None:
        self._stream = stream
        self._consumed = False
        self._closed = False

    def __aiter__(self) -> AsyncIterator[StreamChunk]:
        if self._consumed:
            raise RuntimeError("Completion stream can only be consumed once")
        self._consumed = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[StreamChunk]:
        try:
            async for chunk in self._stream:
                for choice in chunk.choices or []:
                    normalized = _normalize_choice(choice)
                    yield normalized
                    if normalized.finish_reason:
                        return
        except (openai.APIError, httpx.TransportError) as e:
            raise map_upstream_error(e) from e
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        """Abort the underlying HTTP response."""
        if self._closed:
            return
        self._closed = True
        await self._stream.close()


def _normalize_choice(choice: Any) -> StreamChunk:
    """Convert one provider stream choice into a StreamChunk."""
    delta = choice.delta
    tool_deltas = None

    if delta is not None and delta.tool_calls:
        tool_deltas = [
            ToolCallDelta(
                index=tc.index,
                id=tc.id or None,
                name=(tc.function.name or None) if tc.function else None,
                arguments=(tc.function.arguments or "") if tc.function else "",
            )
            for tc in delta.tool_calls
        ]

    return StreamChunk(
        index=choice.index,
        role=delta.role if delta is not None else None,
        content=delta.content if delta is not None else None,
        tool_calls=tool_deltas,
        finish_reason=choice.finish_reason,
    )


class OpenAICompatibleClient:
    """LLM client for any OpenAI-compatible inference provider.

    OpenAI, OpenRouter, vLLM, Ollama and llama.cpp all expose the same
    ``/v1/chat/completions`` endpoint. The SDK is built with retries
    disabled: a failed call surfaces immediately and retry policy stays
    with the caller.
    """

    def __init__(
        self,
        model: str,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 30.0,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        organization: str | None = None,
    ) -> None:
        """Initialise the client.

        Args:
            model: Default model identifier.
            base_url: OpenAI-compatible endpoint (must include ``/v1``).
            api_key: API key (local backends ignore it but the SDK requires one).
            timeout: Per-call timeout in seconds, applied to connect and each read.
            temperature: Default sampling temperature.
            max_tokens: Default completion token limit.
            organization: Optional OpenAI organization id.
        """
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.client = AsyncOpenAI(
            base_url=base_url,
            api_key=api_key or "none",
            organization=organization,
            timeout=timeout,
            max_retries=0,
        )

    def _convert_messages(self, messages: list[Message]) -> list[dict[str, Any]]:
        """Convert internal Message format to OpenAI format."""
        openai_messages: list[dict[str, Any]] = []

        for msg in messages:
            message_dict: dict[str, Any] = {
                "role": msg.role,
                "content": msg.content,
            }

            if msg.role == "assistant" and msg.tool_calls:
                message_dict["tool_calls"] = [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {
                            "name": tc.name,
                            "arguments": (
                                tc.raw_arguments
                                if tc.raw_arguments is not None
                                else json.dumps(tc.arguments)
                            ),
                        },
                    }
                    for tc in msg.tool_calls
                ]

            if msg.role == "tool":
                message_dict["tool_call_id"] = msg.tool_call_id or ""
            if msg.name and msg.role != "system":
                message_dict["name"] = msg.name

            openai_messages.append(message_dict)

        return openai_messages

    def _parse_tool_calls(self, tool_calls: Any) -> list[ToolCall]:
        """Parse tool calls from an OpenAI-compatible response."""
        if not tool_calls:
            return []

        parsed: list[ToolCall] = []
        for tc in tool_calls:
            raw = tc.function.arguments or ""
            try:
                args = json.loads(raw) if raw else {}
            except json.JSONDecodeError:
                logger.warning(f"Malformed arguments for tool call {tc.id} ({tc.function.name})")
                args = {}
            parsed.append(
                ToolCall(
                    id=tc.id,
                    name=tc.function.name,
                    arguments=args if isinstance(args, dict) else {},
                    raw_arguments=raw,
                )
            )
        return parsed

    def _build_params(
        self, messages: list[Message], options: CompletionOptions | None
    ) -> dict[str, Any]:
        options = options or CompletionOptions()

        params: dict[str, Any] = {
            "model": options.model or self.model,
            "messages": self._convert_messages(messages),
            "temperature": (
                options.temperature if options.temperature is not None else self.temperature
            ),
        }

        max_tokens = options.max_tokens or self.max_tokens
        if max_tokens:
            params["max_tokens"] = max_tokens

        if options.tools:
            params["tools"] = options.tools
            choice = options.tool_choice or "auto"
            if choice in TOOL_CHOICE_MODES:
                params["tool_choice"] = choice
            else:
                params["tool_choice"] = {"type": "function", "function": {"name": choice}}

        return params

    async def complete(
        self,
        messages: list[Message],
        options: CompletionOptions | None = None,
    ) -> CompletionResponse:
        """Generate a completion.

        Args:
            messages: Conversation history.
            options: Model, sampling and tool parameters.

        Returns:
            CompletionResponse with content and optional tool calls.

        Raises:
            UpstreamError: If the provider call fails.
        """
        params = self._build_params(messages, options)

        try:
            response = await self.client.chat.completions.create(**params)
        except (openai.APIError, httpx.TransportError) as e:
            raise map_upstream_error(e) from e

        if not response.choices:
            raise UpstreamError(UpstreamErrorCode.UNKNOWN_ERROR, "Provider returned no choices")

        choice = response.choices[0]
        message = choice.message

        tool_calls = self._parse_tool_calls(message.tool_calls)

        return CompletionResponse(
            content=message.content or "",
            tool_calls=tool_calls if tool_calls else None,
            finish_reason=choice.finish_reason or "stop",
        )

    async def stream_complete(
        self,
        messages: list[Message],
        options: CompletionOptions | None = None,
    ) -> OpenAICompletionStream:
        """Open a streamed completion.

        The HTTP request is sent and its status checked before this returns,
        so request-level failures raise here rather than from iteration.

        Args:
            messages: Conversation history.
            options: Model, sampling and tool parameters.

        Returns:
            Single-use stream of normalized chunks.

        Raises:
            UpstreamError: If the provider rejects or cannot serve the request.
        """
        params = self._build_params(messages, options)
        params["stream"] = True

        logger.debug(
            f"Opening completion stream: model={params['model']} "
            f"messages={len(params['messages'])} tools={len(params.get('tools', []))}"
        )

        try:
            stream = await self.client.chat.completions.create(**params)
        except (openai.APIError, httpx.TransportError) as e:
            raise map_upstream_error(e) from e

        return OpenAICompletionStream(stream)
