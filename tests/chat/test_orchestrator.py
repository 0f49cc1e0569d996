"""Tests for the streaming chat orchestrator."""

import asyncio
import json

import pytest
from fakes import ScriptedLLM, ScriptedStream, text_turn, tool_turn

from chatgate.chat.accumulator import ToolCallFragment
from chatgate.chat.context import RequestContext
from chatgate.chat.errors import ChatError, ChatErrorCode
from chatgate.chat.models import ChatRequest
from chatgate.chat.orchestrator import (
    ChatOrchestrator,
    ExchangeState,
    build_history,
    parse_arguments,
)
from chatgate.config.schema import ChatConfig, ToolsConfig
from chatgate.llm.client import StreamChunk, ToolCallDelta
from chatgate.llm.errors import UpstreamError, UpstreamErrorCode
from chatgate.memory.schema import MessageRecord, ToolCallRecord
from chatgate.metrics import MetricsRecorder
from chatgate.tools import create_tool_registry
from chatgate.tools.base import ToolResult
from chatgate.tools.registry import ToolRegistry

CTX = RequestContext.create(user_id="alice", correlation_id="test-cid")


async def _session(store, **kwargs):
    return await store.create_session(user_id="alice", **kwargs)


def _tool_results(records):
    return [ToolResult.from_json(r.content) for r in records if r.role == "tool"]


@pytest.mark.asyncio
async def test_text_exchange_forwards_and_persists_once(store, chat_config):
    """Content chunks concatenate to the full reply and one assistant message is saved."""
    session = await _session(store)
    llm = ScriptedLLM([text_turn("Hel", "lo ", "world")])
    orchestrator = ChatOrchestrator(llm, store, ToolRegistry(), chat_config)

    stream = await orchestrator.start(ChatRequest(session_id=session.id, message="Hi"), CTX)
    chunks = [chunk async for chunk in stream]

    assert "".join(c.content or "" for c in chunks) == "Hello world"
    assert chunks[-1].finish_reason == "stop"
    assert all(c.turn == 1 for c in chunks)

    records = await store.get_messages(session.id)
    assert [r.role for r in records] == ["user", "assistant"]
    assert records[0].content == "Hi"
    assert records[1].content == "Hello world"
    assert stream.producer.state is ExchangeState.DONE
    assert llm.opened[0].closed


@pytest.mark.asyncio
async def test_history_starts_with_system_prompt(store, chat_config):
    session = await _session(store)
    await store.save_message(session.id, MessageRecord(session_id=session.id, role="user", content="earlier"))
    await store.save_message(
        session.id, MessageRecord(session_id=session.id, role="assistant", content="reply")
    )
    llm = ScriptedLLM([text_turn("ok")])
    orchestrator = ChatOrchestrator(llm, store, ToolRegistry(), chat_config)

    await (await orchestrator.start({"session_id": session.id, "message": "now"}, CTX)).collect()

    history, options = llm.calls[0]
    assert [m.role for m in history] == ["system", "user", "assistant", "user"]
    assert history[0].content == "You are a test assistant."
    assert history[-1].content == "now"
    # No tools registered, so none are offered
    assert options.tools is None


@pytest.mark.asyncio
async def test_system_prompt_precedence(store, chat_config):
    session = await _session(store, system_prompt="Session prompt")
    llm = ScriptedLLM([text_turn("a"), text_turn("b")])
    orchestrator = ChatOrchestrator(llm, store, ToolRegistry(), chat_config)

    await (await orchestrator.start({"session_id": session.id, "message": "x"}, CTX)).collect()
    await (
        await orchestrator.start(
            {"session_id": session.id, "message": "y", "system_prompt": "Request prompt"}, CTX
        )
    ).collect()

    assert llm.calls[0][0][0].content == "Session prompt"
    assert llm.calls[1][0][0].content == "Request prompt"


@pytest.mark.asyncio
async def test_tool_round_executes_in_order_then_continues(store, chat_config, echo_registry):
    """N fragments give N executions and N tool messages before the continuation."""
    session = await _session(store)
    llm = ScriptedLLM(
        [
            tool_turn(
                ("call_a", "echo", '{"message": "hi"}'),
                ("call_b", "echo", '{"message": "yo", "times": 2}'),
            ),
            text_turn("Done."),
        ]
    )
    orchestrator = ChatOrchestrator(llm, store, echo_registry, chat_config)

    stream = await orchestrator.start(ChatRequest(session_id=session.id, message="echo"), CTX)
    result = await stream.collect()

    assert result.content == "Done."
    assert result.finish_reason == "stop"
    assert result.turns == 2
    assert [tc["function"]["name"] for tc in result.tool_calls] == ["echo", "echo"]
    assert stream.producer.tool_executions == 2

    # The continuation saw both tool results, in index order
    continuation_history = llm.calls[1][0]
    assert [m.role for m in continuation_history] == ["system", "user", "assistant", "tool", "tool"]
    assert [m.tool_call_id for m in continuation_history[3:]] == ["call_a", "call_b"]

    records = await store.get_messages(session.id)
    assert [r.role for r in records] == ["user", "assistant", "tool", "tool", "assistant"]
    assert [tc.id for tc in records[1].tool_calls] == ["call_a", "call_b"]
    assert records[1].tool_calls[1].arguments == '{"message": "yo", "times": 2}'

    results = _tool_results(records)
    assert [r.result for r in results] == ["hi", "yoyo"]
    assert all(r.success for r in results)
    assert records[2].name == "echo"


@pytest.mark.asyncio
async def test_tools_offered_with_tool_choice(store, chat_config, echo_registry):
    session = await _session(store)
    llm = ScriptedLLM([text_turn("ok")])
    orchestrator = ChatOrchestrator(llm, store, echo_registry, chat_config)

    await (
        await orchestrator.start(
            {"session_id": session.id, "message": "x", "tool_choice": "echo", "temperature": 0.1},
            CTX,
        )
    ).collect()

    options = llm.calls[0][1]
    assert [t["function"]["name"] for t in options.tools] == ["echo", "broken"]
    assert options.tool_choice == "echo"
    assert options.temperature == 0.1


@pytest.mark.asyncio
async def test_use_tools_false_withholds_tools(store, chat_config, echo_registry):
    session = await _session(store)
    llm = ScriptedLLM([text_turn("ok")])
    orchestrator = ChatOrchestrator(llm, store, echo_registry, chat_config)

    await (
        await orchestrator.start({"session_id": session.id, "message": "x", "use_tools": False}, CTX)
    ).collect()

    assert llm.calls[0][1].tools is None


@pytest.mark.asyncio
async def test_fragments_execute_in_index_order(store, chat_config):
    """Deltas arriving out of index order still run and persist by index."""
    calls = []
    registry = ToolRegistry()

    @registry.tool(description="Record a call")
    async def record(tag: str) -> str:
        calls.append(tag)
        return tag

    session = await _session(store)
    turn = ScriptedStream(
        [
            StreamChunk(role="assistant"),
            StreamChunk(tool_calls=[ToolCallDelta(index=1, id="c1", name="record", arguments='{"tag":')]),
            StreamChunk(tool_calls=[ToolCallDelta(index=0, id="c0", name="record", arguments='{"tag":')]),
            StreamChunk(tool_calls=[ToolCallDelta(index=1, arguments='"second"}')]),
            StreamChunk(tool_calls=[ToolCallDelta(index=0, arguments='"first"}')]),
            StreamChunk(finish_reason="tool_calls"),
        ]
    )
    llm = ScriptedLLM([turn, text_turn("ok")])
    orchestrator = ChatOrchestrator(llm, store, registry, chat_config)

    result = await (await orchestrator.start({"session_id": session.id, "message": "go"}, CTX)).collect()

    assert calls == ["first", "second"]
    records = await store.get_messages(session.id)
    assert [r.tool_call_id for r in records if r.role == "tool"] == ["c0", "c1"]
    # The finish chunk carries the consolidated calls
    assert [tc["id"] for tc in result.tool_calls] == ["c0", "c1"]
    assert result.tool_calls[0]["function"]["arguments"] == '{"tag":"first"}'


@pytest.mark.asyncio
async def test_tool_deltas_are_not_forwarded(store, chat_config, echo_registry):
    session = await _session(store)
    llm = ScriptedLLM([tool_turn(("c1", "echo", '{"message": "hi"}')), text_turn("ok")])
    orchestrator = ChatOrchestrator(llm, store, echo_registry, chat_config)

    result = await (await orchestrator.start({"session_id": session.id, "message": "go"}, CTX)).collect()

    with_calls = [c for c in result.chunks if c.tool_calls]
    assert len(with_calls) == 1
    assert with_calls[0].finish_reason == "tool_calls"
    assert with_calls[0].turn == 1
    assert result.chunks[-1].turn == 2


@pytest.mark.asyncio
async def test_unknown_tool_is_absorbed(store, chat_config, echo_registry):
    session = await _session(store)
    llm = ScriptedLLM([tool_turn(("c1", "nonexistent_tool", "{}")), text_turn("Sorry.")])
    orchestrator = ChatOrchestrator(llm, store, echo_registry, chat_config)

    result = await (await orchestrator.start({"session_id": session.id, "message": "go"}, CTX)).collect()

    assert result.content == "Sorry."
    [tool_result] = _tool_results(await store.get_messages(session.id))
    assert tool_result.success is False
    assert tool_result.error == "Tool not found: nonexistent_tool"


@pytest.mark.asyncio
async def test_file_read_missing_path_is_absorbed(store, chat_config, tmp_path):
    session = await _session(store)
    registry = create_tool_registry(
        ToolsConfig(file_base_path=str(tmp_path / "files"), web=False, data=False)
    )
    llm = ScriptedLLM([tool_turn(("c1", "file_read", "{}")), text_turn("Need a path.")])
    orchestrator = ChatOrchestrator(llm, store, registry, chat_config)

    await (await orchestrator.start({"session_id": session.id, "message": "read"}, CTX)).collect()

    [tool_result] = _tool_results(await store.get_messages(session.id))
    assert tool_result.success is False
    assert tool_result.error == "Missing required field: path"


@pytest.mark.asyncio
async def test_malformed_arguments_become_failed_result(store, chat_config, echo_registry):
    session = await _session(store)
    llm = ScriptedLLM([tool_turn(("c1", "echo", '{"message": ')), text_turn("Oops.")])
    orchestrator = ChatOrchestrator(llm, store, echo_registry, chat_config)

    stream = await orchestrator.start({"session_id": session.id, "message": "go"}, CTX)
    result = await stream.collect()

    assert result.content == "Oops."
    [tool_result] = _tool_results(await store.get_messages(session.id))
    assert tool_result.success is False
    assert tool_result.error.startswith("Invalid JSON arguments for echo")
    assert stream.producer.state is ExchangeState.DONE


@pytest.mark.asyncio
async def test_tool_exception_is_absorbed(store, chat_config, echo_registry):
    session = await _session(store)
    llm = ScriptedLLM([tool_turn(("c1", "broken", "")), text_turn("It broke.")])
    orchestrator = ChatOrchestrator(llm, store, echo_registry, chat_config)

    await (await orchestrator.start({"session_id": session.id, "message": "go"}, CTX)).collect()

    [tool_result] = _tool_results(await store.get_messages(session.id))
    assert tool_result.success is False
    assert tool_result.error == "tool exploded"
    assert tool_result.execution_time_ms >= 0


@pytest.mark.asyncio
async def test_missing_tool_call_id_is_generated(store, chat_config, echo_registry):
    session = await _session(store)
    llm = ScriptedLLM([tool_turn(("", "echo", '{"message": "x"}')), text_turn("ok")])
    orchestrator = ChatOrchestrator(llm, store, echo_registry, chat_config)

    await (await orchestrator.start({"session_id": session.id, "message": "go"}, CTX)).collect()

    records = await store.get_messages(session.id)
    call_id = records[1].tool_calls[0].id
    assert call_id.startswith("call_")
    assert records[2].tool_call_id == call_id


@pytest.mark.asyncio
async def test_mid_stream_upstream_error_fails_stream(store, chat_config):
    session = await _session(store)
    turn = ScriptedStream(
        [StreamChunk(role="assistant", content="par")],
        error=UpstreamError(UpstreamErrorCode.CONNECTION_ERROR, "connection dropped"),
    )
    llm = ScriptedLLM([turn])
    orchestrator = ChatOrchestrator(llm, store, ToolRegistry(), chat_config)

    stream = await orchestrator.start({"session_id": session.id, "message": "go"}, CTX)
    received = []
    with pytest.raises(ChatError) as exc_info:
        async for chunk in stream:
            received.append(chunk)

    assert exc_info.value.code is ChatErrorCode.UPSTREAM_ERROR
    assert exc_info.value.upstream_code is UpstreamErrorCode.CONNECTION_ERROR
    assert [c.content for c in received] == ["par"]
    assert stream.producer.state is ExchangeState.FAILED
    assert turn.closed
    # Only the user message; the partial reply is not persisted
    assert [r.role for r in await store.get_messages(session.id)] == ["user"]


@pytest.mark.asyncio
async def test_stream_without_finish_reason_is_pipeline_error(store, chat_config):
    session = await _session(store)
    llm = ScriptedLLM([ScriptedStream([StreamChunk(role="assistant", content="cut")])])
    orchestrator = ChatOrchestrator(llm, store, ToolRegistry(), chat_config)

    stream = await orchestrator.start({"session_id": session.id, "message": "go"}, CTX)
    with pytest.raises(ChatError) as exc_info:
        await stream.collect()

    assert exc_info.value.code is ChatErrorCode.PIPELINE_ERROR
    assert "without a finish reason" in exc_info.value.message


@pytest.mark.asyncio
async def test_initial_upstream_error_raises_before_stream(store, chat_config):
    session = await _session(store)
    llm = ScriptedLLM([UpstreamError(UpstreamErrorCode.RATE_LIMITED, "Rate limit exceeded", status=429)])
    orchestrator = ChatOrchestrator(llm, store, ToolRegistry(), chat_config)

    with pytest.raises(ChatError) as exc_info:
        await orchestrator.start({"session_id": session.id, "message": "go"}, CTX)

    error = exc_info.value
    assert error.code is ChatErrorCode.UPSTREAM_ERROR
    assert error.upstream_code is UpstreamErrorCode.RATE_LIMITED
    assert error.retry_after == 60.0


@pytest.mark.asyncio
async def test_continuation_upstream_error_aborts_after_persisting_tools(store, chat_config, echo_registry):
    session = await _session(store)
    llm = ScriptedLLM(
        [
            tool_turn(("c1", "echo", '{"message": "hi"}')),
            UpstreamError(UpstreamErrorCode.INTERNAL_ERROR, "Model provider internal server error", 500),
        ]
    )
    orchestrator = ChatOrchestrator(llm, store, echo_registry, chat_config)

    stream = await orchestrator.start({"session_id": session.id, "message": "go"}, CTX)
    with pytest.raises(ChatError) as exc_info:
        await stream.collect()

    assert exc_info.value.upstream_code is UpstreamErrorCode.INTERNAL_ERROR
    assert stream.producer.state is ExchangeState.FAILED
    roles = [r.role for r in await store.get_messages(session.id)]
    assert roles == ["user", "assistant", "tool"]


@pytest.mark.asyncio
async def test_turn_limit_withholds_tools_and_fails(store, echo_registry):
    session = await _session(store)
    llm = ScriptedLLM(
        [
            tool_turn(("c1", "echo", '{"message": "1"}')),
            tool_turn(("c2", "echo", '{"message": "2"}')),
        ]
    )
    orchestrator = ChatOrchestrator(llm, store, echo_registry, ChatConfig(max_turns=2))

    stream = await orchestrator.start({"session_id": session.id, "message": "loop"}, CTX)
    with pytest.raises(ChatError) as exc_info:
        await stream.collect()

    assert exc_info.value.code is ChatErrorCode.PIPELINE_ERROR
    assert exc_info.value.message == "Exceeded maximum of 2 model turns"
    assert llm.calls[0][1].tools is not None
    # The last allowed turn is sent without tools
    assert llm.calls[1][1].tools is None
    assert stream.producer.tool_executions == 1


@pytest.mark.asyncio
async def test_cancel_mid_stream_does_not_run_tools(store, chat_config):
    calls = []
    registry = ToolRegistry()

    @registry.tool(description="Record a call")
    async def record(tag: str) -> str:
        calls.append(tag)
        return tag

    session = await _session(store)
    turn = ScriptedStream(
        [
            StreamChunk(role="assistant", content="Let me check"),
            StreamChunk(tool_calls=[ToolCallDelta(index=0, id="c0", name="record", arguments='{"tag"')]),
        ],
        hang=True,
    )
    llm = ScriptedLLM([turn])
    orchestrator = ChatOrchestrator(llm, store, registry, chat_config)

    stream = await orchestrator.start({"session_id": session.id, "message": "go"}, CTX)
    first = await stream.__anext__()
    assert first.content == "Let me check"

    await asyncio.wait_for(stream.aclose(), timeout=2)

    assert calls == []
    assert stream.closed
    assert turn.closed
    assert stream.producer.state is ExchangeState.FAILED
    assert stream.producer.tool_executions == 0
    assert [r.role for r in await store.get_messages(session.id)] == ["user"]


@pytest.mark.asyncio
async def test_unread_tool_finish_chunk_runs_no_tools(store, chat_config):
    calls = []
    registry = ToolRegistry()

    @registry.tool(description="Record a call")
    async def record(tag: str) -> str:
        calls.append(tag)
        return tag

    session = await _session(store)
    llm = ScriptedLLM([tool_turn(("c0", "record", '{"tag": "x"}')), text_turn("done")])
    orchestrator = ChatOrchestrator(llm, store, registry, chat_config)

    stream = await orchestrator.start({"session_id": session.id, "message": "go"}, CTX)
    first = await stream.__anext__()
    assert first.role == "assistant"

    # The provider turn has fully arrived, but its finish chunk is never taken
    await asyncio.sleep(0.05)
    assert llm.opened[0].yielded == len(llm.opened[0].chunks)
    await asyncio.wait_for(stream.aclose(), timeout=2)

    assert calls == []
    assert stream.producer.tool_executions == 0
    assert len(llm.calls) == 1
    assert [r.role for r in await store.get_messages(session.id)] == ["user"]


@pytest.mark.asyncio
async def test_metrics_count_turns_and_outcomes(store, chat_config, echo_registry):
    metrics = MetricsRecorder()
    echo_registry.metrics = metrics
    session = await _session(store)
    llm = ScriptedLLM(
        [
            tool_turn(("call_a", "echo", '{"message": "hi"}')),
            text_turn("Done."),
            ScriptedStream(
                [StreamChunk(role="assistant", content="par")],
                error=UpstreamError(UpstreamErrorCode.CONNECTION_ERROR, "connection dropped"),
            ),
        ]
    )
    orchestrator = ChatOrchestrator(llm, store, echo_registry, chat_config, metrics=metrics)

    await (await orchestrator.start({"session_id": session.id, "message": "one"}, CTX)).collect()
    with pytest.raises(ChatError):
        await (await orchestrator.start({"session_id": session.id, "message": "two"}, CTX)).collect()
    with pytest.raises(ChatError):
        await orchestrator.start({"session_id": "missing", "message": "three"}, CTX)

    assert metrics.counter("exchanges_started") == 2
    assert metrics.counter("exchanges_rejected") == 1
    assert metrics.counter("exchanges_completed") == 1
    assert metrics.counter("exchanges_failed") == 1
    assert metrics.counter("model_turns") == 3
    assert metrics.counter("tool_executions") == 1
    assert metrics.latency("exchange").summary()["count"] == 2
    assert metrics.latency("tool.echo").summary()["count"] == 1


@pytest.mark.asyncio
async def test_metrics_count_cancelled_exchange(store, chat_config):
    metrics = MetricsRecorder()
    session = await _session(store)
    llm = ScriptedLLM([ScriptedStream([StreamChunk(role="assistant", content="wait")], hang=True)])
    orchestrator = ChatOrchestrator(llm, store, ToolRegistry(), chat_config, metrics=metrics)

    stream = await orchestrator.start({"session_id": session.id, "message": "go"}, CTX)
    await stream.__anext__()
    await asyncio.wait_for(stream.aclose(), timeout=2)

    assert metrics.counter("exchanges_cancelled") == 1
    assert metrics.counter("exchanges_completed") == 0


@pytest.mark.asyncio
async def test_close_before_iteration_releases_provider_stream(store, chat_config):
    session = await _session(store)
    llm = ScriptedLLM([text_turn("never read")])
    orchestrator = ChatOrchestrator(llm, store, ToolRegistry(), chat_config)

    stream = await orchestrator.start({"session_id": session.id, "message": "go"}, CTX)
    await stream.aclose()

    assert llm.opened[0].closed
    assert llm.opened[0].yielded == 0
    assert [c async for c in stream] == []


@pytest.mark.asyncio
async def test_missing_session_is_not_found(store, chat_config):
    orchestrator = ChatOrchestrator(ScriptedLLM(), store, ToolRegistry(), chat_config)

    with pytest.raises(ChatError) as exc_info:
        await orchestrator.start({"session_id": "missing", "message": "hi"}, CTX)

    assert exc_info.value.code is ChatErrorCode.NOT_FOUND


@pytest.mark.asyncio
async def test_other_users_session_is_not_found(store, chat_config):
    session = await store.create_session(user_id="bob")
    llm = ScriptedLLM([text_turn("x")])
    orchestrator = ChatOrchestrator(llm, store, ToolRegistry(), chat_config)

    with pytest.raises(ChatError) as exc_info:
        await orchestrator.start({"session_id": session.id, "message": "hi"}, CTX)

    assert exc_info.value.code is ChatErrorCode.NOT_FOUND
    assert llm.calls == []
    assert await store.get_message_count(session.id) == 0


@pytest.mark.asyncio
async def test_invalid_request_never_reaches_model(store, chat_config):
    llm = ScriptedLLM([text_turn("x")])
    orchestrator = ChatOrchestrator(llm, store, ToolRegistry(), chat_config)

    with pytest.raises(ChatError) as exc_info:
        await orchestrator.start({"session_id": "s", "message": "   "}, CTX)

    assert exc_info.value.code is ChatErrorCode.VALIDATION_ERROR
    assert "message" in exc_info.value.message
    assert llm.calls == []


def test_validate_rejects_unknown_tool_choice(store, echo_registry):
    orchestrator = ChatOrchestrator(ScriptedLLM(), store, echo_registry)

    with pytest.raises(ChatError) as exc_info:
        orchestrator.validate({"session_id": "s", "message": "hi", "tool_choice": "ghost"})
    assert exc_info.value.code is ChatErrorCode.VALIDATION_ERROR

    assert orchestrator.validate({"session_id": "s", "message": "hi", "tool_choice": "echo"}).tool_choice == "echo"
    assert orchestrator.validate({"session_id": "s", "message": "hi", "tool_choice": "none"}).tool_choice == "none"


def test_validate_rejects_out_of_range_temperature(store):
    orchestrator = ChatOrchestrator(ScriptedLLM(), store, ToolRegistry())

    with pytest.raises(ChatError) as exc_info:
        orchestrator.validate({"session_id": "s", "message": "hi", "temperature": 3})
    assert exc_info.value.code is ChatErrorCode.VALIDATION_ERROR
    assert exc_info.value.details["errors"]


def test_parse_arguments():
    assert parse_arguments(ToolCallFragment(index=0, name="t", arguments="")) == {}
    assert parse_arguments(ToolCallFragment(index=0, name="t", arguments='{"a": 1}')) == {"a": 1}

    not_object = parse_arguments(ToolCallFragment(index=0, name="t", arguments="[1, 2]"))
    assert isinstance(not_object, ToolResult)
    assert not_object.error == "Tool arguments must be a JSON object"


def test_split_arguments_parse_like_whole():
    split = ToolCallFragment(index=0, name="search", arguments='{"query":' + '"hi"}')
    whole = ToolCallFragment(index=0, name="search", arguments='{"query":"hi"}')
    assert parse_arguments(split) == parse_arguments(whole) == {"query": "hi"}


def test_build_history_drops_incomplete_tool_groups():
    sid = "s1"
    records = [
        # Orphan result whose request fell outside the history window
        MessageRecord(session_id=sid, role="tool", content="{}", tool_call_id="old"),
        MessageRecord(session_id=sid, role="user", content="q1"),
        MessageRecord(
            session_id=sid,
            role="assistant",
            tool_calls=[ToolCallRecord(id="a", name="t"), ToolCallRecord(id="b", name="t")],
        ),
        # Only one of two calls answered: exchange was aborted
        MessageRecord(session_id=sid, role="tool", content="{}", tool_call_id="a"),
        MessageRecord(session_id=sid, role="user", content="q2"),
        MessageRecord(
            session_id=sid,
            role="assistant",
            tool_calls=[ToolCallRecord(id="c", name="t", arguments='{"x": 1}')],
        ),
        MessageRecord(session_id=sid, role="tool", content=json.dumps({"success": True}), tool_call_id="c"),
        MessageRecord(session_id=sid, role="assistant", content="answer"),
    ]

    history = build_history(records)

    assert [m.role for m in history] == ["user", "user", "assistant", "tool", "assistant"]
    assert history[2].tool_calls[0].raw_arguments == '{"x": 1}'
    assert history[3].tool_call_id == "c"
