"""Tests for the ChatStream channel."""

import asyncio

import pytest

from chatgate.chat.errors import ChatError, ChatErrorCode
from chatgate.chat.stream import ChatResult, ChatStream
from chatgate.llm.client import StreamChunk, ToolCallDelta


class ListProducer:
    """Emits fixed chunks, then optionally raises."""

    def __init__(self, chunks, error=None, block=False):
        self.chunks = chunks
        self.error = error
        self.block = block
        self.emitted = 0
        self.cancelled = False
        self.discarded = False

    async def run(self, emit):
        try:
            for chunk in self.chunks:
                await emit(chunk)
                self.emitted += 1
            if self.block:
                await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self.error is not None:
            raise self.error

    async def discard(self):
        self.discarded = True


def _chunks(*texts):
    return [StreamChunk(content=t) for t in texts]


@pytest.mark.asyncio
async def test_iterates_until_end():
    stream = ChatStream(ListProducer(_chunks("a", "b", "c")))

    assert [c.content async for c in stream] == ["a", "b", "c"]
    assert stream.closed
    assert [c async for c in stream] == []


@pytest.mark.asyncio
async def test_producer_waits_until_each_chunk_is_taken():
    producer = ListProducer(_chunks("a", "b", "c", "d"))
    stream = ChatStream(producer)

    first = await stream.__anext__()
    await asyncio.sleep(0.01)

    assert first.content == "a"
    # "b" sits in the queue; its emit has not returned
    assert producer.emitted == 1
    await stream.aclose()


@pytest.mark.asyncio
async def test_producer_does_not_start_before_iteration():
    producer = ListProducer(_chunks("a"))
    stream = ChatStream(producer)
    await asyncio.sleep(0.01)

    assert producer.emitted == 0
    await stream.aclose()
    assert producer.discarded


@pytest.mark.asyncio
async def test_chat_error_is_raised_from_iteration():
    error = ChatError(ChatErrorCode.PIPELINE_ERROR, "boom")
    stream = ChatStream(ListProducer(_chunks("a"), error=error))

    received = []
    with pytest.raises(ChatError) as exc_info:
        async for chunk in stream:
            received.append(chunk.content)

    assert exc_info.value is error
    assert received == ["a"]
    assert stream.closed


@pytest.mark.asyncio
async def test_unexpected_exception_becomes_pipeline_error():
    stream = ChatStream(ListProducer([], error=KeyError("choices")))

    with pytest.raises(ChatError) as exc_info:
        await stream.collect()

    assert exc_info.value.code is ChatErrorCode.PIPELINE_ERROR
    assert exc_info.value.message.startswith("Unexpected pipeline failure")


@pytest.mark.asyncio
async def test_cancel_wakes_consumer_and_cancels_producer():
    producer = ListProducer(_chunks("a"), block=True)
    stream = ChatStream(producer)

    async def next_chunk():
        try:
            return await stream.__anext__()
        except StopAsyncIteration:
            return None

    assert (await next_chunk()).content == "a"
    consumer = asyncio.create_task(next_chunk())
    await asyncio.sleep(0.01)

    stream.cancel()
    assert await asyncio.wait_for(consumer, timeout=1) is None

    await stream.aclose()
    assert producer.cancelled
    assert not producer.discarded


@pytest.mark.asyncio
async def test_async_with_closes_stream():
    producer = ListProducer(_chunks("a", "b"), block=True)

    async with ChatStream(producer) as stream:
        async for chunk in stream:
            if chunk.content == "b":
                break

    assert stream.closed
    assert producer.cancelled


@pytest.mark.asyncio
async def test_collect_builds_result():
    chunks = [
        StreamChunk(role="assistant", content="Let me look. "),
        StreamChunk(
            finish_reason="tool_calls",
            tool_calls=[ToolCallDelta(index=0, id="c1", name="web_search", arguments='{"query": "x"}')],
        ),
        StreamChunk(content="Found it.", turn=2),
        StreamChunk(finish_reason="stop", turn=2),
    ]

    result = await ChatStream(ListProducer(chunks)).collect()

    assert result.content == "Let me look. Found it."
    assert result.finish_reason == "stop"
    assert result.turns == 2
    assert result.tool_calls == [
        {"index": 0, "id": "c1", "function": {"name": "web_search", "arguments": '{"query": "x"}'}}
    ]
    assert result.to_dict()["turns"] == 2


def test_empty_result():
    assert ChatResult().to_dict() == {"content": "", "finish_reason": None, "turns": 0, "tool_calls": []}


def test_chunk_wire_format():
    chunk = StreamChunk(index=0, role="assistant", content="Hi", turn=1)
    assert chunk.to_dict() == {
        "index": 0,
        "turn": 1,
        "delta": {"role": "assistant", "content": "Hi"},
        "finish_reason": None,
    }
    assert StreamChunk(finish_reason="stop").to_dict()["delta"] == {}
