"""Tests for the OpenAI-compatible LLM client."""

import json

import httpx
import pytest
import respx
from httpx import Response

from chatgate.llm.client import CompletionOptions, Message, ToolCall
from chatgate.llm.errors import UpstreamError, UpstreamErrorCode
from chatgate.llm.openai_compat import OpenAICompatibleClient

BASE_URL = "http://localhost:11434/v1"
COMPLETIONS_URL = f"{BASE_URL}/chat/completions"


@pytest.fixture
def client():
    return OpenAICompatibleClient(model="qwen2.5:7b", base_url=BASE_URL, temperature=0.7, max_tokens=256)


def _sse(*events) -> bytes:
    lines = [f"data: {json.dumps(e)}\n\n" for e in events]
    lines.append("data: [DONE]\n\n")
    return "".join(lines).encode()


def _chunk(delta, finish_reason=None):
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion.chunk",
        "created": 1677652288,
        "model": "qwen2.5:7b",
        "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
    }


def _stream_response(*events):
    return Response(200, content=_sse(*events), headers={"content-type": "text/event-stream"})


@pytest.mark.asyncio
@respx.mock
async def test_complete_simple_response(client):
    route = respx.post(COMPLETIONS_URL).mock(
        return_value=Response(
            200,
            json={
                "id": "chatcmpl-123",
                "object": "chat.completion",
                "created": 1677652288,
                "model": "qwen2.5:7b",
                "choices": [
                    {
                        "index": 0,
                        "message": {"role": "assistant", "content": "Hello! How can I help you?"},
                        "finish_reason": "stop",
                    }
                ],
            },
        )
    )

    response = await client.complete([Message(role="user", content="Hi")])

    assert response.content == "Hello! How can I help you?"
    assert response.tool_calls is None
    assert response.finish_reason == "stop"

    body = json.loads(route.calls.last.request.content)
    assert body["model"] == "qwen2.5:7b"
    assert body["temperature"] == 0.7
    assert body["max_tokens"] == 256
    assert "tools" not in body


@pytest.mark.asyncio
@respx.mock
async def test_complete_with_tool_calls(client):
    respx.post(COMPLETIONS_URL).mock(
        return_value=Response(
            200,
            json={
                "id": "chatcmpl-123",
                "object": "chat.completion",
                "created": 1677652288,
                "model": "qwen2.5:7b",
                "choices": [
                    {
                        "index": 0,
                        "message": {
                            "role": "assistant",
                            "content": None,
                            "tool_calls": [
                                {
                                    "id": "call_1",
                                    "type": "function",
                                    "function": {
                                        "name": "web_search",
                                        "arguments": json.dumps({"query": "Python"}),
                                    },
                                }
                            ],
                        },
                        "finish_reason": "tool_calls",
                    }
                ],
            },
        )
    )

    response = await client.complete([Message(role="user", content="Search")])

    assert response.content == ""
    assert response.finish_reason == "tool_calls"
    [call] = response.tool_calls
    assert call.id == "call_1"
    assert call.name == "web_search"
    assert call.arguments == {"query": "Python"}
    assert call.raw_arguments == '{"query": "Python"}'


@pytest.mark.asyncio
@respx.mock
async def test_request_options_and_history_format(client):
    route = respx.post(COMPLETIONS_URL).mock(return_value=_stream_response(_chunk({"content": ""}, "stop")))
    history = [
        Message(role="system", content="Be brief."),
        Message(role="user", content="Search"),
        Message(
            role="assistant",
            content="",
            tool_calls=[ToolCall(id="call_1", name="web_search", arguments={}, raw_arguments='{"query":"x"}')],
        ),
        Message(role="tool", content='{"success": true}', tool_call_id="call_1", name="web_search"),
    ]
    tools = [{"type": "function", "function": {"name": "web_search", "parameters": {"type": "object"}}}]

    stream = await client.stream_complete(
        history,
        CompletionOptions(model="other", temperature=0.0, max_tokens=10, tools=tools, tool_choice="web_search"),
    )
    [chunk async for chunk in stream]

    body = json.loads(route.calls.last.request.content)
    assert body["model"] == "other"
    assert body["temperature"] == 0.0
    assert body["max_tokens"] == 10
    assert body["stream"] is True
    assert body["tools"] == tools
    assert body["tool_choice"] == {"type": "function", "function": {"name": "web_search"}}
    assert body["messages"][2]["tool_calls"][0]["function"]["arguments"] == '{"query":"x"}'
    assert body["messages"][3] == {
        "role": "tool",
        "content": '{"success": true}',
        "tool_call_id": "call_1",
        "name": "web_search",
    }


@pytest.mark.asyncio
@respx.mock
async def test_stream_content_chunks(client):
    respx.post(COMPLETIONS_URL).mock(
        return_value=_stream_response(
            _chunk({"role": "assistant", "content": ""}),
            _chunk({"content": "Hel"}),
            _chunk({"content": "lo"}),
            _chunk({}, "stop"),
        )
    )

    stream = await client.stream_complete([Message(role="user", content="Hi")])
    chunks = [chunk async for chunk in stream]

    assert chunks[0].role == "assistant"
    assert "".join(c.content or "" for c in chunks) == "Hello"
    assert chunks[-1].finish_reason == "stop"
    assert all(c.finish_reason is None for c in chunks[:-1])


@pytest.mark.asyncio
@respx.mock
async def test_stream_tool_call_deltas(client):
    respx.post(COMPLETIONS_URL).mock(
        return_value=_stream_response(
            _chunk(
                {
                    "role": "assistant",
                    "tool_calls": [
                        {
                            "index": 0,
                            "id": "call_1",
                            "type": "function",
                            "function": {"name": "web_search", "arguments": '{"query":'},
                        }
                    ],
                }
            ),
            _chunk({"tool_calls": [{"index": 0, "function": {"arguments": '"hi"}'}}]}),
            _chunk({}, "tool_calls"),
        )
    )

    stream = await client.stream_complete([Message(role="user", content="Search")])
    chunks = [chunk async for chunk in stream]

    first, second = chunks[0].tool_calls[0], chunks[1].tool_calls[0]
    assert (first.index, first.id, first.name, first.arguments) == (0, "call_1", "web_search", '{"query":')
    assert (second.id, second.name, second.arguments) == (None, None, '"hi"}')
    assert chunks[-1].finish_reason == "tool_calls"


@pytest.mark.asyncio
@respx.mock
async def test_stream_is_single_use(client):
    respx.post(COMPLETIONS_URL).mock(return_value=_stream_response(_chunk({"content": "x"}, "stop")))

    stream = await client.stream_complete([Message(role="user", content="Hi")])
    [chunk async for chunk in stream]

    with pytest.raises(RuntimeError):
        [chunk async for chunk in stream]


@pytest.mark.asyncio
@respx.mock
async def test_stream_error_event_raises_upstream_error(client):
    respx.post(COMPLETIONS_URL).mock(
        return_value=_stream_response(
            _chunk({"content": "par"}),
            {"error": {"message": "Provider overloaded", "type": "server_error"}},
        )
    )

    stream = await client.stream_complete([Message(role="user", content="Hi")])
    received = []
    with pytest.raises(UpstreamError) as exc_info:
        async for chunk in stream:
            received.append(chunk)

    assert [c.content for c in received] == ["par"]
    assert exc_info.value.code is UpstreamErrorCode.UNKNOWN_ERROR


@pytest.mark.asyncio
@respx.mock
async def test_rate_limit_carries_retry_hint(client):
    respx.post(COMPLETIONS_URL).mock(
        return_value=Response(429, json={"error": {"message": "slow down"}}, headers={"retry-after": "7"})
    )

    with pytest.raises(UpstreamError) as exc_info:
        await client.stream_complete([Message(role="user", content="Hi")])

    assert exc_info.value.code is UpstreamErrorCode.RATE_LIMITED
    assert exc_info.value.status == 429
    assert exc_info.value.retry_after == 7.0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status,code",
    [
        (400, UpstreamErrorCode.BAD_REQUEST),
        (401, UpstreamErrorCode.UNAUTHORIZED),
        (403, UpstreamErrorCode.FORBIDDEN),
        (404, UpstreamErrorCode.NOT_FOUND),
        (500, UpstreamErrorCode.INTERNAL_ERROR),
        (503, UpstreamErrorCode.INTERNAL_ERROR),
    ],
)
async def test_status_codes_are_mapped(client, status, code):
    with respx.mock:
        respx.post(COMPLETIONS_URL).mock(return_value=Response(status, json={"error": {"message": "nope"}}))

        with pytest.raises(UpstreamError) as exc_info:
            await client.complete([Message(role="user", content="Hi")])

    assert exc_info.value.code is code
    assert exc_info.value.status == status


@pytest.mark.asyncio
@respx.mock
async def test_connection_error(client):
    respx.post(COMPLETIONS_URL).mock(side_effect=httpx.ConnectError("refused"))

    with pytest.raises(UpstreamError) as exc_info:
        await client.stream_complete([Message(role="user", content="Hi")])

    assert exc_info.value.code is UpstreamErrorCode.CONNECTION_ERROR


@pytest.mark.asyncio
@respx.mock
async def test_timeout(client):
    respx.post(COMPLETIONS_URL).mock(side_effect=httpx.ReadTimeout("slow"))

    with pytest.raises(UpstreamError) as exc_info:
        await client.complete([Message(role="user", content="Hi")])

    assert exc_info.value.code is UpstreamErrorCode.TIMEOUT
