"""Pytest configuration and shared fixtures."""

import pytest

from chatgate.config.schema import ChatConfig, ChatGateConfig
from chatgate.memory.manager import MemoryManager
from chatgate.tools.registry import ToolRegistry


@pytest.fixture
def default_config() -> ChatGateConfig:
    """Provide a default configuration for tests."""
    return ChatGateConfig()


@pytest.fixture
def test_config(tmp_path) -> ChatGateConfig:
    """Configuration with storage and file tools confined to a temp directory."""
    config = ChatGateConfig()
    config.memory.storage_path = str(tmp_path / "chatgate.db")
    config.tools.file_base_path = str(tmp_path / "files")
    config.tools.web = False
    config.chat.max_turns = 3
    return config


@pytest.fixture
def store(tmp_path) -> MemoryManager:
    """Async conversation store on a temporary database."""
    return MemoryManager(tmp_path / "memory.db")


@pytest.fixture
def chat_config() -> ChatConfig:
    return ChatConfig(max_turns=3, system_prompt="You are a test assistant.")


@pytest.fixture
def echo_registry() -> ToolRegistry:
    """Registry with simple deterministic tools."""
    registry = ToolRegistry()

    @registry.tool(description="Echo a message back")
    async def echo(message: str, times: int = 1) -> str:
        """Echo.

        Args:
            message: Text to echo
            times: Repetitions
        """
        return message * times

    @registry.tool(description="Always fails")
    async def broken() -> str:
        raise RuntimeError("tool exploded")

    return registry
