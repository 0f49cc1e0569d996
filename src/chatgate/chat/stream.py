"""Cancellable producer/consumer channel for streamed chat chunks."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from chatgate.chat.errors import ChatError, ChatErrorCode
from chatgate.llm.client import StreamChunk

logger = logging.getLogger(__name__)

# Returns once the consumer has taken the chunk
Emit = Callable[[StreamChunk], Awaitable[None]]

_END = object()


@dataclass(frozen=True)
class _Failure:
    error: ChatError


class ChunkProducer(Protocol):
    """Work that feeds a ChatStream."""

    async def run(self, emit: Emit) -> None:
        """Emit chunks until the exchange ends; raise ChatError on failure."""
        ...

    async def discard(self) -> None:
        """Release resources when ``run`` is never started."""
        ...


@dataclass
class ChatResult:
    """A fully drained chat stream."""

    content: str = ""
    finish_reason: str | None = None
    turns: int = 0
    tool_calls: list[dict[str, Any]] = field(default_factory=list)
    chunks: list[StreamChunk] = field(default_factory=list)

    def add(self, chunk: StreamChunk) -> None:
        self.chunks.append(chunk)
        self.turns = max(self.turns, chunk.turn)
        if chunk.content:
            self.content += chunk.content
        if chunk.tool_calls:
            self.tool_calls.extend(tc.to_dict() for tc in chunk.tool_calls)
        if chunk.finish_reason:
            self.finish_reason = chunk.finish_reason

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "finish_reason": self.finish_reason,
            "turns": self.turns,
            "tool_calls": self.tool_calls,
        }


class ChatStream:
    """Async iterator over the chunks of one chat exchange.

    A producer task hands chunks over through a one-slot queue and each
    emit returns only after the consumer has taken the chunk, so work that
    follows a chunk (such as running the tools a finish chunk announces)
    never happens unless the consumer read it. The producer starts on
    first iteration.

    Signals:

    - normal end: iteration stops
    - failure: iteration raises :class:`ChatError`
    - cancel: :meth:`cancel`, :meth:`aclose` or leaving ``async with``
      cancels the producer, which aborts the in-flight provider request
    """

    def __init__(self, producer: ChunkProducer) -> None:
        self.producer = producer
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=1)
        self._task: asyncio.Task[None] | None = None
        self._discard_task: asyncio.Task[None] | None = None
        self._started = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def _run(self) -> None:
        self._started = True
        try:
            await self.producer.run(self._emit)
        except ChatError as e:
            await self._queue.put(_Failure(e))
            return
        except Exception as e:
            logger.exception("Chat producer failed unexpectedly")
            error = ChatError(ChatErrorCode.PIPELINE_ERROR, f"Unexpected pipeline failure: {e}")
            await self._queue.put(_Failure(error))
            return
        await self._queue.put(_END)

    async def _emit(self, chunk: StreamChunk) -> None:
        await self._queue.put(chunk)
        await self._queue.join()

    def __aiter__(self) -> "ChatStream":
        return self

    async def __anext__(self) -> StreamChunk:
        if self._closed:
            raise StopAsyncIteration
        if self._task is None:
            self._task = asyncio.create_task(self._run())

        item = await self._queue.get()
        self._queue.task_done()
        if item is _END:
            self._closed = True
            raise StopAsyncIteration
        if isinstance(item, _Failure):
            self._closed = True
            raise item.error
        return item

    def cancel(self) -> None:
        """Stop the exchange without waiting for cleanup to finish."""
        if self._closed and (self._task is None or self._task.done()):
            return
        self._closed = True
        if self._task is not None:
            self._task.cancel()
        # Wake a consumer blocked in __anext__
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
        self._queue.put_nowait(_END)
        if not self._started and self._discard_task is None:
            self._discard_task = asyncio.ensure_future(self.producer.discard())

    async def aclose(self) -> None:
        """Cancel the exchange and wait until the provider stream is released."""
        self.cancel()
        pending = {t for t in (self._task, self._discard_task) if t is not None}
        if pending:
            await asyncio.wait(pending)
        if self._discard_task is not None and not self._discard_task.cancelled():
            error = self._discard_task.exception()
            if error is not None:
                logger.warning(f"Failed to release provider stream: {error}")

    async def collect(self) -> ChatResult:
        """Drain the stream into a ChatResult.

        Raises:
            ChatError: If the exchange fails
        """
        result = ChatResult()
        async with self:
            async for chunk in self:
                result.add(chunk)
        return result

    async def __aenter__(self) -> "ChatStream":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
