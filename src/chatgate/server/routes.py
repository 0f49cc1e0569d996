"""API routes for the chatgate server."""

import json
import logging
from collections.abc import AsyncIterator
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from starlette.background import BackgroundTask

from chatgate import __version__
from chatgate.chat.context import RequestContext
from chatgate.chat.errors import ChatError, ChatErrorCode
from chatgate.chat.models import ChatRequest
from chatgate.chat.orchestrator import ChatOrchestrator
from chatgate.config.schema import ChatGateConfig
from chatgate.llm.client import CompletionOptions, LLMClient, Message, ToolCall
from chatgate.llm.errors import UpstreamError, UpstreamErrorCode
from chatgate.memory.manager import MemoryManager
from chatgate.memory.schema import MessageRecord, SessionRecord
from chatgate.metrics import MetricsRecorder
from chatgate.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

USER_HEADER = "X-User-Id"
CORRELATION_HEADER = "X-Correlation-Id"

NDJSON_MEDIA_TYPE = "application/x-ndjson"

_STATUS_BY_CODE = {
    ChatErrorCode.VALIDATION_ERROR: 400,
    ChatErrorCode.NOT_FOUND: 404,
    ChatErrorCode.TOOL_ERROR: 500,
    ChatErrorCode.PIPELINE_ERROR: 500,
}


def error_status(error: ChatError) -> int:
    """HTTP status for a chat error."""
    if error.code is ChatErrorCode.UPSTREAM_ERROR:
        upstream = error.upstream_code
        if upstream is UpstreamErrorCode.RATE_LIMITED:
            return 429
        if upstream is UpstreamErrorCode.TIMEOUT:
            return 504
        return 502
    return _STATUS_BY_CODE[error.code]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    model: str
    version: str
    tools: int


class CreateSessionRequest(BaseModel):
    """Request body for creating a session."""

    title: str | None = Field(default=None, min_length=1, max_length=256)
    system_prompt: str | None = Field(default=None, max_length=32_768)
    metadata: dict[str, Any] = Field(default_factory=dict)


class UpdateSessionRequest(BaseModel):
    """Request body for updating a session; omitted fields are unchanged."""

    title: str | None = Field(default=None, min_length=1, max_length=256)
    system_prompt: str | None = Field(default=None, max_length=32_768)
    metadata: dict[str, Any] | None = None


class SessionResponse(SessionRecord):
    """Session with its message count."""

    message_count: int = 0


class SessionListResponse(BaseModel):
    sessions: list[SessionRecord]
    total: int
    limit: int
    offset: int


class MessageListResponse(BaseModel):
    session_id: str
    messages: list[MessageRecord]


class ChatResponse(BaseModel):
    """Collected result of a chat exchange."""

    session_id: str
    content: str
    finish_reason: str | None
    turns: int
    tool_calls: list[dict[str, Any]]


class CompletionRequest(BaseModel):
    """Request body for the single-shot completion endpoint."""

    messages: list[dict[str, Any]] = Field(min_length=1)
    model: str | None = None
    tools: list[dict[str, Any]] | None = None
    tool_choice: str | None = None
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, ge=1, le=8192)


class CompletionResponse(BaseModel):
    """Response body for the completion endpoint."""

    content: str
    tool_calls: list[dict[str, Any]] | None = None
    finish_reason: str


def get_request_context(request: Request) -> RequestContext:
    """Build the request context from identity and correlation headers."""
    correlation_id = getattr(request.state, "correlation_id", None) or request.headers.get(
        CORRELATION_HEADER
    )
    return RequestContext.create(
        user_id=request.headers.get(USER_HEADER),
        correlation_id=correlation_id,
    )


def _to_message(data: dict[str, Any]) -> Message:
    """Parse a provider-format message dict."""
    tool_calls = None
    if data.get("tool_calls"):
        tool_calls = []
        for tc in data["tool_calls"]:
            function = tc.get("function", tc)
            raw = function.get("arguments", "")
            if not isinstance(raw, str):
                raw = json.dumps(raw)
            tool_calls.append(
                ToolCall(id=tc.get("id", ""), name=function["name"], arguments={}, raw_arguments=raw)
            )
    return Message(
        role=data["role"],
        content=data.get("content") or "",
        tool_calls=tool_calls,
        tool_call_id=data.get("tool_call_id"),
        name=data.get("name"),
    )


def create_router(
    config: ChatGateConfig,
    llm: LLMClient,
    store: MemoryManager,
    tools: ToolRegistry,
    metrics: MetricsRecorder | None = None,
) -> APIRouter:
    """Create API router with the configured orchestrator.

    Args:
        config: chatgate configuration
        llm: LLM client
        store: Session and message store
        tools: Tool registry offered to the model
        metrics: Recorder served on ``/metrics``; a fresh one if omitted

    Returns:
        Configured API router
    """
    router = APIRouter()

    metrics = metrics if metrics is not None else MetricsRecorder()

    orchestrator = ChatOrchestrator(
        llm=llm,
        store=store,
        tools=tools,
        chat_config=config.chat,
        model_config=config.model,
        metrics=metrics,
    )

    async def owned_session(session_id: str, ctx: RequestContext) -> SessionRecord:
        session = await store.get_session(session_id)
        if session is None or session.user_id != ctx.user_id:
            raise ChatError(
                ChatErrorCode.NOT_FOUND,
                f"Session not found: {session_id}",
                details={"session_id": session_id},
            )
        return session

    @router.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        """Health check endpoint."""
        return HealthResponse(
            status="healthy",
            model=config.model.name,
            version=__version__,
            tools=len(tools),
        )

    @router.get("/metrics")
    async def get_metrics() -> dict[str, Any]:
        """Exchange and tool counters with latency percentiles."""
        return metrics.snapshot()

    @router.post("/sessions", response_model=SessionRecord, status_code=201)
    async def create_session(
        body: CreateSessionRequest,
        ctx: RequestContext = Depends(get_request_context),
    ) -> SessionRecord:
        return await store.create_session(
            user_id=ctx.user_id,
            title=body.title,
            system_prompt=body.system_prompt,
            metadata=body.metadata,
        )

    @router.get("/sessions", response_model=SessionListResponse)
    async def list_sessions(
        limit: int = Query(20, ge=1, le=100),
        offset: int = Query(0, ge=0),
        ctx: RequestContext = Depends(get_request_context),
    ) -> SessionListResponse:
        sessions, total = await store.list_sessions(ctx.user_id, limit=limit, offset=offset)
        return SessionListResponse(sessions=sessions, total=total, limit=limit, offset=offset)

    @router.get("/sessions/{session_id}", response_model=SessionResponse)
    async def get_session(
        session_id: str,
        ctx: RequestContext = Depends(get_request_context),
    ) -> SessionResponse:
        session = await owned_session(session_id, ctx)
        count = await store.get_message_count(session_id)
        return SessionResponse(**session.model_dump(), message_count=count)

    @router.patch("/sessions/{session_id}", response_model=SessionRecord)
    async def update_session(
        session_id: str,
        body: UpdateSessionRequest,
        ctx: RequestContext = Depends(get_request_context),
    ) -> SessionRecord:
        await owned_session(session_id, ctx)
        updated = await store.update_session(
            session_id,
            title=body.title,
            system_prompt=body.system_prompt,
            metadata=body.metadata,
        )
        if updated is None:
            raise ChatError(ChatErrorCode.NOT_FOUND, f"Session not found: {session_id}")
        return updated

    @router.delete("/sessions/{session_id}", status_code=204)
    async def delete_session(
        session_id: str,
        ctx: RequestContext = Depends(get_request_context),
    ) -> Response:
        await owned_session(session_id, ctx)
        await store.delete_session(session_id)
        return Response(status_code=204)

    @router.get("/sessions/{session_id}/messages", response_model=MessageListResponse)
    async def list_messages(
        session_id: str,
        limit: int = Query(50, ge=1, le=500),
        before: datetime | None = Query(None),
        ctx: RequestContext = Depends(get_request_context),
    ) -> MessageListResponse:
        await owned_session(session_id, ctx)
        messages = await store.get_messages(session_id, limit=limit, before=before)
        return MessageListResponse(session_id=session_id, messages=messages)

    @router.post("/chat/stream")
    async def chat_stream(
        body: ChatRequest,
        ctx: RequestContext = Depends(get_request_context),
    ) -> StreamingResponse:
        """Chat endpoint - newline-delimited JSON streaming version.

        Request-level failures are returned as regular JSON errors. Once the
        stream is open, a failure is reported as a final ``{"error": ...}``
        line before the connection closes.
        """
        stream = await orchestrator.start(body, ctx)

        async def ndjson() -> AsyncIterator[str]:
            try:
                async for chunk in stream:
                    yield json.dumps(chunk.to_dict(), ensure_ascii=False) + "\n"
            except ChatError as e:
                yield json.dumps({"error": e.to_dict()}, ensure_ascii=False) + "\n"
            finally:
                await stream.aclose()

        # Also close when the client disconnects before the generator starts
        return StreamingResponse(
            ndjson(), media_type=NDJSON_MEDIA_TYPE, background=BackgroundTask(stream.aclose)
        )

    @router.post("/chat", response_model=ChatResponse)
    async def chat(
        body: ChatRequest,
        ctx: RequestContext = Depends(get_request_context),
    ) -> ChatResponse:
        """Chat endpoint - non-streaming version."""
        stream = await orchestrator.start(body, ctx)
        result = await stream.collect()
        return ChatResponse(session_id=body.session_id, **result.to_dict())

    @router.post("/api/complete", response_model=CompletionResponse)
    async def complete(body: CompletionRequest) -> CompletionResponse:
        """Single-shot completion passthrough to the configured provider."""
        try:
            messages = [_to_message(m) for m in body.messages]
            options = CompletionOptions(
                model=body.model,
                temperature=body.temperature,
                max_tokens=body.max_tokens,
                tools=body.tools,
                tool_choice=body.tool_choice,
            )
        except (KeyError, TypeError) as e:
            raise ChatError(ChatErrorCode.VALIDATION_ERROR, f"Invalid message: {e}") from e

        try:
            response = await llm.complete(messages, options)
        except UpstreamError as e:
            raise ChatError.upstream(e) from e

        tool_calls = None
        if response.tool_calls:
            tool_calls = [
                {"id": tc.id, "name": tc.name, "arguments": tc.arguments}
                for tc in response.tool_calls
            ]
        return CompletionResponse(
            content=response.content,
            tool_calls=tool_calls,
            finish_reason=response.finish_reason,
        )

    @router.get("/tools")
    async def list_tools() -> dict[str, Any]:
        """Registered tool definitions."""
        return {
            "tools": [
                {**schema.to_definition(), "dangerous": schema.dangerous}
                for schema in tools.list()
            ]
        }

    return router
