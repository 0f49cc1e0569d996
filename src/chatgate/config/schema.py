"""Pydantic models for chatgate.yaml configuration."""

import os
from typing import Literal

from pydantic import BaseModel, Field

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful and harmless AI assistant. "
    "Answer questions, help with tasks, and engage in conversation. "
    "You have access to tools that extend your capabilities; use them when they help. "
    "Always be clear about what you can and cannot do, and if you cannot help with "
    "something, explain why politely."
)


class ProviderConfig(BaseModel):
    """Upstream model provider configuration."""

    backend: Literal["openai", "openrouter", "ollama", "vllm", "custom"] = Field(
        default="openai",
        description="Provider preset; selects the default base URL",
    )
    base_url: str | None = Field(
        default=None,
        description="OpenAI-compatible endpoint including /v1 (overrides the preset)",
    )
    api_key: str | None = Field(default=None, description="API key (prefer api_key_env)")
    api_key_env: str = Field(
        default="OPENAI_API_KEY",
        description="Environment variable holding the API key",
    )
    organization: str | None = Field(default=None, description="OpenAI organization id")
    timeout: float = Field(
        default=30.0,
        description="Timeout in seconds for each provider call",
        gt=0,
    )

    def resolve_api_key(self) -> str | None:
        """Return the configured API key, falling back to the environment."""
        if self.api_key:
            return self.api_key
        return os.environ.get(self.api_key_env) or os.environ.get("OPENROUTER_API_KEY")


class ModelConfig(BaseModel):
    """Default model parameters."""

    name: str = Field(default="gpt-4o-mini", description="Model identifier")
    temperature: float = Field(default=0.7, description="Sampling temperature", ge=0.0, le=2.0)
    max_tokens: int = Field(
        default=4096, description="Maximum tokens per completion", ge=1, le=128000
    )


class ChatConfig(BaseModel):
    """Chat orchestration configuration."""

    max_turns: int = Field(
        default=5,
        description="Maximum model turns per exchange (tool rounds + final answer)",
        ge=1,
        le=20,
    )
    history_limit: int = Field(
        default=100,
        description="Maximum stored messages loaded as history for each turn",
        ge=1,
        le=1000,
    )
    system_prompt: str = Field(
        default=DEFAULT_SYSTEM_PROMPT,
        description="System prompt used when neither request nor session sets one",
    )
    tool_choice: str = Field(
        default="auto",
        description="Default tool choice policy: auto, none, required or a tool name",
    )


class ToolsConfig(BaseModel):
    """Tool availability configuration."""

    enabled: bool = Field(default=True, description="Offer tools to the model")
    filesystem: bool = Field(default=True, description="Enable file_read/file_write/file_list")
    file_base_path: str = Field(
        default="/tmp/chatgate-files",
        description="Directory that filesystem tools are confined to",
    )
    web: bool = Field(default=True, description="Enable web_search/web_fetch")
    web_fetch_timeout: float = Field(
        default=10.0, description="Timeout in seconds for web_fetch", gt=0
    )
    code_execution: bool = Field(
        default=False,
        description="Enable code_execute (runs code on the gateway host)",
    )
    code_timeout_ms: int = Field(
        default=30000, description="Upper bound for code_execute timeouts", ge=100
    )
    data: bool = Field(default=True, description="Enable data_transform/data_query")


class MemoryConfig(BaseModel):
    """Conversation storage configuration."""

    storage_path: str = Field(
        default="~/.chatgate/chatgate.db",
        description="Path to SQLite database for sessions and messages",
    )


class ServerConfig(BaseModel):
    """API server configuration."""

    host: str = Field(default="127.0.0.1", description="Server bind address")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:8000"],
        description="Allowed CORS origins (use ['*'] for development only)",
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    json_format: bool = Field(
        default=False,
        description="Emit JSON lines instead of rich console output",
    )


class ChatGateConfig(BaseModel):
    """Root configuration schema for chatgate."""

    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    model: ModelConfig = Field(default_factory=ModelConfig)
    chat: ChatConfig = Field(default_factory=ChatConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
