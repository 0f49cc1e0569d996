"""Tool registry and built-in tools for chatgate.

Tools are registered on a :class:`ToolRegistry` instance via its ``tool``
decorator, which derives a JSON Schema from the function signature. The
registry validates arguments before invocation and wraps every outcome in a
:class:`ToolResult`.

Built-in tools:

- **file_read** / **file_write** / **file_list** - Filesystem access confined to a base directory
- **web_search** / **web_fetch** - DuckDuckGo search and HTTP fetch
- **code_execute** - Local interpreter subprocess (dangerous, off by default)
- **data_transform** / **data_query** - JSON/CSV/YAML conversion and JSONPath queries

Usage::

    from chatgate.tools import create_tool_registry

    registry = create_tool_registry(config.tools)
    result = await registry.execute("file_read", {"path": "notes.txt"})
"""

import logging

from chatgate.config.schema import ToolsConfig
from chatgate.metrics import MetricsRecorder
from chatgate.tools.base import ParamType, Tool, ToolParameter, ToolResult, ToolSchema
from chatgate.tools.code_execution import register_code_execution_tool
from chatgate.tools.data import register_data_tools
from chatgate.tools.filesystem import register_filesystem_tools
from chatgate.tools.registry import ToolRegistry, validate_parameters
from chatgate.tools.web import register_web_tools

logger = logging.getLogger(__name__)


def create_tool_registry(
    config: ToolsConfig | None = None,
    metrics: MetricsRecorder | None = None,
) -> ToolRegistry:
    """Build a registry holding the built-in tools enabled by ``config``."""
    config = config or ToolsConfig()
    registry = ToolRegistry(metrics=metrics)

    if not config.enabled:
        return registry

    if config.filesystem:
        register_filesystem_tools(registry, config.file_base_path)
    if config.web:
        register_web_tools(registry, fetch_timeout=config.web_fetch_timeout)
    if config.code_execution:
        register_code_execution_tool(registry, max_timeout_ms=config.code_timeout_ms)
    if config.data:
        register_data_tools(registry)

    logger.debug(f"Registered tools: {', '.join(s.name for s in registry.list())}")
    return registry


__all__ = [
    "ParamType",
    "Tool",
    "ToolParameter",
    "ToolRegistry",
    "ToolResult",
    "ToolSchema",
    "create_tool_registry",
    "validate_parameters",
]
