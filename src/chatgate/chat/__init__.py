"""Streaming chat orchestration pipeline.

The :class:`ChatOrchestrator` runs one exchange per user message: it streams
model output to the caller through a :class:`ChatStream`, reassembles
streamed tool calls, executes them via the tool registry, persists the
results and continues the conversation until the model finishes.

Usage::

    orchestrator = ChatOrchestrator(llm, store, tools, config.chat, config.model)
    stream = await orchestrator.start(ChatRequest(session_id=sid, message="hi"), ctx)
    async with stream:
        async for chunk in stream:
            print(chunk.content or "", end="")
"""

from chatgate.chat.accumulator import ToolCallAccumulator, ToolCallFragment
from chatgate.chat.context import RequestContext
from chatgate.chat.errors import ChatError, ChatErrorCode
from chatgate.chat.models import ChatRequest
from chatgate.chat.orchestrator import ChatOrchestrator, Exchange, ExchangeState
from chatgate.chat.stream import ChatResult, ChatStream

__all__ = [
    "ChatError",
    "ChatErrorCode",
    "ChatOrchestrator",
    "ChatRequest",
    "ChatResult",
    "ChatStream",
    "Exchange",
    "ExchangeState",
    "RequestContext",
    "ToolCallAccumulator",
    "ToolCallFragment",
]
