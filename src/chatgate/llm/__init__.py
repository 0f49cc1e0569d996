"""LLM client implementations."""

from .client import (
    CompletionOptions,
    CompletionResponse,
    CompletionStream,
    LLMClient,
    Message,
    StreamChunk,
    ToolCall,
    ToolCallDelta,
)
from .errors import UpstreamError, UpstreamErrorCode, map_upstream_error
from .factory import create_llm_client
from .openai_compat import OpenAICompatibleClient, OpenAICompletionStream

__all__ = [
    "CompletionOptions",
    "CompletionResponse",
    "CompletionStream",
    "LLMClient",
    "Message",
    "OpenAICompatibleClient",
    "OpenAICompletionStream",
    "StreamChunk",
    "ToolCall",
    "ToolCallDelta",
    "UpstreamError",
    "UpstreamErrorCode",
    "create_llm_client",
    "map_upstream_error",
]
