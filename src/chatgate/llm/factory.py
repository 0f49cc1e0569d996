"""Factory function for creating LLM clients from configuration."""

from __future__ import annotations

from typing import TYPE_CHECKING

from chatgate.llm.openai_compat import OpenAICompatibleClient

if TYPE_CHECKING:
    from chatgate.config.schema import ChatGateConfig

# Default endpoints for each provider preset
PROVIDER_BASE_URLS = {
    "openai": "https://api.openai.com/v1",
    "openrouter": "https://openrouter.ai/api/v1",
    "ollama": "http://localhost:11434/v1",
    "vllm": "http://localhost:8000/v1",
}


def create_llm_client(config: ChatGateConfig) -> OpenAICompatibleClient:
    """Create an LLM client based on configuration.

    ``provider.base_url`` wins over the preset selected by
    ``provider.backend``; the ``custom`` preset requires an explicit URL.

    Args:
        config: chatgate configuration.

    Returns:
        An LLM client for the configured provider.

    Raises:
        ValueError: If no base URL can be determined.
    """
    provider = config.provider
    base_url = provider.base_url or PROVIDER_BASE_URLS.get(provider.backend)
    if not base_url:
        raise ValueError(f"provider.base_url is required for backend '{provider.backend}'")

    return OpenAICompatibleClient(
        model=config.model.name,
        base_url=base_url.rstrip("/"),
        api_key=provider.resolve_api_key(),
        timeout=provider.timeout,
        temperature=config.model.temperature,
        max_tokens=config.model.max_tokens,
        organization=provider.organization,
    )
