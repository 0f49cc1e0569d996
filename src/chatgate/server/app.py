"""FastAPI application factory."""

import logging
import math
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chatgate import __version__
from chatgate.chat.errors import ChatError, ChatErrorCode
from chatgate.config.schema import ChatGateConfig
from chatgate.llm.client import LLMClient
from chatgate.llm.factory import create_llm_client
from chatgate.memory.manager import MemoryManager
from chatgate.metrics import MetricsRecorder
from chatgate.server.routes import CORRELATION_HEADER, create_router, error_status
from chatgate.tools import create_tool_registry
from chatgate.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


def create_app(
    config: ChatGateConfig,
    llm: LLMClient | None = None,
    store: MemoryManager | None = None,
    tools: ToolRegistry | None = None,
    metrics: MetricsRecorder | None = None,
) -> FastAPI:
    """Create and configure FastAPI application.

    Components not passed in are built from ``config``.

    Args:
        config: chatgate configuration
        llm: LLM client override
        store: Conversation store override
        tools: Tool registry override
        metrics: Metrics recorder override

    Returns:
        Configured FastAPI app
    """
    app = FastAPI(
        title="chatgate",
        description="Conversational gateway with streaming tool-calling chat",
        version=__version__,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[CORRELATION_HEADER],
    )

    @app.middleware("http")
    async def correlation_id(request: Request, call_next):
        request.state.correlation_id = request.headers.get(CORRELATION_HEADER) or uuid.uuid4().hex
        response = await call_next(request)
        response.headers[CORRELATION_HEADER] = request.state.correlation_id
        return response

    @app.exception_handler(ChatError)
    async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
        headers = {}
        if exc.retry_after is not None:
            headers["Retry-After"] = str(math.ceil(exc.retry_after))
        return JSONResponse(
            status_code=error_status(exc),
            content={"error": exc.to_dict()},
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        error = ChatError(ChatErrorCode.VALIDATION_ERROR, f"Invalid request: {problems}")
        return JSONResponse(status_code=400, content={"error": error.to_dict()})

    llm = llm or create_llm_client(config)
    store = store or MemoryManager(config.memory.storage_path)
    metrics = metrics if metrics is not None else MetricsRecorder()
    tools = tools if tools is not None else create_tool_registry(config.tools, metrics=metrics)
    if tools.metrics is None:
        tools.metrics = metrics

    app.state.llm = llm
    app.state.store = store
    app.state.tools = tools
    app.state.metrics = metrics

    app.include_router(create_router(config, llm=llm, store=store, tools=tools, metrics=metrics))

    logger.info(f"chatgate API ready: model={config.model.name} tools={len(tools)}")
    return app
