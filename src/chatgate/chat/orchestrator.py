"""Streaming chat orchestration.

One exchange takes a user message through one or more model turns: chunks
are forwarded to the caller as they arrive, tool calls are reassembled from
stream deltas, executed through the tool registry, persisted, and fed back
to the model in a continuation turn until the model finishes.
"""

import asyncio
import dataclasses
import json
import logging
import time
import uuid
from enum import Enum
from typing import Any

from pydantic import ValidationError

from chatgate.chat.accumulator import ToolCallAccumulator, ToolCallFragment
from chatgate.chat.context import RequestContext
from chatgate.chat.errors import ChatError, ChatErrorCode
from chatgate.chat.models import ChatRequest
from chatgate.chat.stream import ChatStream, Emit
from chatgate.config.schema import ChatConfig, ModelConfig
from chatgate.llm.client import (
    FINISH_TOOL_CALLS,
    TOOL_CHOICE_MODES,
    CompletionOptions,
    CompletionStream,
    LLMClient,
    Message,
    StreamChunk,
    ToolCall,
    ToolCallDelta,
)
from chatgate.llm.errors import UpstreamError
from chatgate.memory.schema import MessageRecord, SessionRecord
from chatgate.metrics import MetricsRecorder
from chatgate.memory.store import ConversationStore
from chatgate.tools.base import ToolResult
from chatgate.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


class ExchangeState(str, Enum):
    """Lifecycle of one chat exchange."""

    STREAMING_MODEL_TURN = "streaming_model_turn"
    EXECUTING_TOOLS = "executing_tools"
    PERSISTING_RESULTS = "persisting_results"
    CONTINUATION_TURN = "continuation_turn"
    DONE = "done"
    FAILED = "failed"


def build_history(records: list[MessageRecord]) -> list[Message]:
    """Convert stored records into a conversation the provider accepts.

    Tool messages without their requesting assistant message (cut off by the
    history limit) are dropped, as are assistant tool-call messages whose
    calls were not all answered (an exchange aborted mid-way).
    """
    messages: list[Message] = []
    i = 0
    while i < len(records):
        record = records[i]

        if record.role == "tool":
            i += 1
            continue

        if record.role == "assistant" and record.tool_calls:
            call_ids = {tc.id for tc in record.tool_calls}
            j = i + 1
            answers: list[MessageRecord] = []
            while j < len(records) and records[j].role == "tool":
                answers.append(records[j])
                j += 1
            if call_ids <= {a.tool_call_id for a in answers}:
                messages.append(record.to_message())
                messages.extend(a.to_message() for a in answers if a.tool_call_id in call_ids)
            i = j
            continue

        messages.append(record.to_message())
        i += 1

    return messages


def parse_arguments(fragment: ToolCallFragment) -> dict[str, Any] | ToolResult:
    """Decode accumulated arguments, or return the failure to persist."""
    raw = fragment.arguments.strip()
    if not raw:
        return {}
    try:
        params = json.loads(raw)
    except json.JSONDecodeError as e:
        return ToolResult.failure(f"Invalid JSON arguments for {fragment.name or 'tool'}: {e.msg}")
    if not isinstance(params, dict):
        return ToolResult.failure("Tool arguments must be a JSON object")
    return params


class Exchange:
    """State and producer logic for one exchange.

    Created by :meth:`ChatOrchestrator.start` with the first provider stream
    already open; :meth:`run` drives it to completion through a ChatStream.
    """

    def __init__(
        self,
        orchestrator: "ChatOrchestrator",
        request: ChatRequest,
        session: SessionRecord,
        context: RequestContext,
    ) -> None:
        self.orchestrator = orchestrator
        self.request = request
        self.session = session
        self.context = context
        self.state = ExchangeState.STREAMING_MODEL_TURN
        self.turn = 1
        self.tool_executions = 0
        self._stream: CompletionStream | None = None
        self._log = context.logger(logger)
        self._started_at = time.perf_counter()

    @property
    def max_turns(self) -> int:
        return self.orchestrator.chat_config.max_turns

    def _system_prompt(self) -> str:
        return (
            self.request.system_prompt
            or self.session.system_prompt
            or self.orchestrator.chat_config.system_prompt
        )

    def _tools_offered(self) -> bool:
        # The last allowed turn must produce an answer, so no tools are sent
        return (
            self.request.use_tools
            and len(self.orchestrator.tools) > 0
            and self.turn < self.max_turns
        )

    def _options(self) -> CompletionOptions:
        model_config = self.orchestrator.model_config
        options = CompletionOptions(
            model=self.request.model or model_config.name,
            temperature=(
                self.request.temperature
                if self.request.temperature is not None
                else model_config.temperature
            ),
            max_tokens=self.request.max_tokens or model_config.max_tokens,
        )
        if self._tools_offered():
            options.tools = self.orchestrator.tools.to_openai_format()
            options.tool_choice = self.request.tool_choice or self.orchestrator.chat_config.tool_choice
        return options

    async def _load_history(self) -> list[Message]:
        records = await self.orchestrator.store.get_messages(
            self.session.id, limit=self.orchestrator.chat_config.history_limit
        )
        return [Message(role="system", content=self._system_prompt()), *build_history(records)]

    async def open_turn(self) -> None:
        """Load the full history and open the provider stream for the current turn.

        Raises:
            ChatError: UPSTREAM_ERROR if the provider rejects the request
        """
        history = await self._load_history()
        options = self._options()
        self._log.debug(
            f"Opening turn {self.turn}/{self.max_turns} with {len(history)} messages "
            f"(tools={'on' if options.tools else 'off'})"
        )
        try:
            self._stream = await self.orchestrator.llm.stream_complete(history, options)
        except UpstreamError as e:
            raise ChatError.upstream(e) from e
        self._count("model_turns")

    def _count(self, name: str) -> None:
        self.orchestrator._count(name)

    def _finish(self, outcome: str) -> None:
        metrics = self.orchestrator.metrics
        if metrics is None:
            return
        metrics.increment(f"exchanges_{outcome}")
        metrics.record_latency("exchange", round((time.perf_counter() - self._started_at) * 1000, 3))

    async def discard(self) -> None:
        await self._close_stream()

    async def _close_stream(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            await stream.aclose()

    async def run(self, emit: Emit) -> None:
        """Forward chunks and run tool rounds until a terminal finish reason.

        Raises:
            ChatError: On upstream failure, a truncated provider stream or
                exceeding the turn limit
        """
        try:
            while True:
                finish_reason, content, fragments = await self._stream_turn(emit)
                await self._close_stream()

                if finish_reason != FINISH_TOOL_CALLS:
                    await self._save(Message(role="assistant", content=content))
                    self.state = ExchangeState.DONE
                    self._finish("completed")
                    self._log.info(
                        f"Exchange finished after {self.turn} turn(s): {finish_reason}"
                    )
                    return

                await self._run_tools(content, fragments)

                self.state = ExchangeState.CONTINUATION_TURN
                self.turn += 1
                try:
                    await self.open_turn()
                except ChatError as e:
                    self._log.error(f"Continuation turn {self.turn} failed: {e.message}")
                    raise
                self.state = ExchangeState.STREAMING_MODEL_TURN
        except asyncio.CancelledError:
            self.state = ExchangeState.FAILED
            self._log.info(f"Exchange cancelled during turn {self.turn}")
            self._finish("cancelled")
            raise
        except ChatError as e:
            self.state = ExchangeState.FAILED
            self._log.warning(f"Exchange failed: {e.code.value}: {e.message}")
            self._finish("failed")
            raise
        except Exception:
            self.state = ExchangeState.FAILED
            self._finish("failed")
            raise
        finally:
            await self._close_stream()

    async def _stream_turn(self, emit: Emit) -> tuple[str, str, list[ToolCallFragment]]:
        """Forward one provider turn, accumulating tool-call deltas.

        Returns:
            Tuple of (finish reason, full content, tool call fragments)
        """
        if self._stream is None:
            raise ChatError(ChatErrorCode.PIPELINE_ERROR, "No provider stream is open")

        accumulator = ToolCallAccumulator()
        content_parts: list[str] = []

        try:
            async for chunk in self._stream:
                if chunk.tool_calls:
                    for delta in chunk.tool_calls:
                        accumulator.feed(delta)
                if chunk.content:
                    content_parts.append(chunk.content)

                if chunk.finish_reason:
                    fragments = accumulator.finalize()
                    if chunk.finish_reason == FINISH_TOOL_CALLS:
                        self._check_tool_round(fragments)
                        for fragment in fragments:
                            if not fragment.id:
                                fragment.id = f"call_{uuid.uuid4().hex[:12]}"
                    await emit(self._forwarded(chunk, fragments))
                    return chunk.finish_reason, "".join(content_parts), fragments

                if chunk.role is not None or chunk.content is not None:
                    await emit(self._forwarded(chunk, None))
        except UpstreamError as e:
            raise ChatError.upstream(e) from e

        raise ChatError(
            ChatErrorCode.PIPELINE_ERROR,
            f"Provider stream ended without a finish reason (turn {self.turn})",
        )

    def _forwarded(self, chunk: StreamChunk, fragments: list[ToolCallFragment] | None) -> StreamChunk:
        """Caller-facing copy of a provider chunk; raw tool deltas are replaced."""
        tool_calls = None
        if fragments and chunk.finish_reason == FINISH_TOOL_CALLS:
            tool_calls = [
                ToolCallDelta(index=f.index, id=f.id, name=f.name, arguments=f.arguments)
                for f in fragments
            ]
        return dataclasses.replace(chunk, tool_calls=tool_calls, turn=self.turn)

    def _check_tool_round(self, fragments: list[ToolCallFragment]) -> None:
        if not fragments:
            raise ChatError(
                ChatErrorCode.PIPELINE_ERROR,
                "Provider finished with tool_calls but sent no tool calls",
            )
        if self.turn >= self.max_turns:
            raise ChatError(
                ChatErrorCode.PIPELINE_ERROR,
                f"Exceeded maximum of {self.max_turns} model turns",
                details={"max_turns": self.max_turns},
            )
        if not self._tools_offered():
            raise ChatError(
                ChatErrorCode.PIPELINE_ERROR,
                "Provider requested tool calls although no tools were offered",
            )

    async def _run_tools(self, content: str, fragments: list[ToolCallFragment]) -> None:
        """Persist the tool-call message, then execute and persist each call in index order."""
        await self._save(
            Message(
                role="assistant",
                content=content,
                tool_calls=[
                    ToolCall(id=f.id, name=f.name, arguments={}, raw_arguments=f.arguments)
                    for f in fragments
                ],
            )
        )

        for fragment in fragments:
            self.state = ExchangeState.EXECUTING_TOOLS
            parsed = parse_arguments(fragment)
            if isinstance(parsed, ToolResult):
                self._log.info(f"Tool call {fragment.id} has malformed arguments")
                result = parsed
            else:
                result = await self.orchestrator.tools.execute(fragment.name, parsed, self.context)
            self.tool_executions += 1

            self.state = ExchangeState.PERSISTING_RESULTS
            await self._save(
                Message(
                    role="tool",
                    content=result.to_json(),
                    tool_call_id=fragment.id,
                    name=fragment.name,
                )
            )

    async def _save(self, message: Message) -> MessageRecord:
        return await self.orchestrator.store.save_message(self.session.id, message)


class ChatOrchestrator:
    """Runs chat exchanges against an LLM, a conversation store and a tool registry."""

    def __init__(
        self,
        llm: LLMClient,
        store: ConversationStore,
        tools: ToolRegistry,
        chat_config: ChatConfig | None = None,
        model_config: ModelConfig | None = None,
        metrics: MetricsRecorder | None = None,
    ):
        """Initialize the orchestrator.

        Args:
            llm: Streaming LLM client
            store: Session and message persistence
            tools: Tools offered to the model
            chat_config: Turn limit, history size and default prompt
            model_config: Default model parameters
            metrics: Recorder for exchange counts and latencies
        """
        self.llm = llm
        self.store = store
        self.tools = tools
        self.chat_config = chat_config or ChatConfig()
        self.model_config = model_config or ModelConfig()
        self.metrics = metrics

    def _count(self, name: str) -> None:
        if self.metrics is not None:
            self.metrics.increment(name)

    def validate(self, request: ChatRequest | dict[str, Any]) -> ChatRequest:
        """Validate a chat request.

        Raises:
            ChatError: VALIDATION_ERROR describing the first problems found
        """
        if not isinstance(request, ChatRequest):
            try:
                request = ChatRequest.model_validate(request)
            except ValidationError as e:
                problems = "; ".join(
                    f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
                )
                raise ChatError(
                    ChatErrorCode.VALIDATION_ERROR,
                    f"Invalid chat request: {problems}",
                    details={"errors": e.errors(include_url=False, include_context=False)},
                ) from e

        choice = request.tool_choice
        if choice is not None and choice not in TOOL_CHOICE_MODES and choice not in self.tools:
            raise ChatError(
                ChatErrorCode.VALIDATION_ERROR,
                f"Unknown tool_choice: {choice}",
                details={"tool_choice": choice},
            )
        return request

    async def start(
        self,
        request: ChatRequest | dict[str, Any],
        context: RequestContext | None = None,
    ) -> ChatStream:
        """Begin an exchange.

        Validates the request, loads the session, persists the user message
        and opens the first provider stream. Nothing is streamed to the
        caller if any of that fails.

        Args:
            request: Chat request (validated here if given as a dict)
            context: Request context; a fresh one is created if omitted

        Returns:
            ChatStream of normalized chunks

        Raises:
            ChatError: VALIDATION_ERROR, NOT_FOUND, UPSTREAM_ERROR or PIPELINE_ERROR
        """
        try:
            request = self.validate(request)
        except ChatError:
            self._count("exchanges_rejected")
            raise
        context = (context or RequestContext.create()).with_session(request.session_id)
        log = context.logger(logger)

        try:
            session = await self.store.get_session(request.session_id)
            if session is None or session.user_id != context.user_id:
                raise ChatError(
                    ChatErrorCode.NOT_FOUND,
                    f"Session not found: {request.session_id}",
                    details={"session_id": request.session_id},
                )

            await self.store.save_message(session.id, Message(role="user", content=request.message))

            exchange = Exchange(self, request, session, context)
            await exchange.open_turn()
        except ChatError as e:
            self._count("exchanges_rejected")
            log.warning(f"Chat request rejected: {e.code.value}: {e.message}")
            raise
        except Exception as e:
            self._count("exchanges_rejected")
            log.exception("Failed to start chat exchange")
            raise ChatError(
                ChatErrorCode.PIPELINE_ERROR, f"Failed to start chat exchange: {e}"
            ) from e

        self._count("exchanges_started")
        log.info(f"Started exchange in session {session.id}")
        return ChatStream(exchange)
