"""Tool registration, validation and execution."""

import inspect
import logging
import time
import types
from collections.abc import Callable
from typing import Any, Literal, Union, get_args, get_origin, get_type_hints

from chatgate.metrics import MetricsRecorder
from chatgate.tools.base import (
    ParamType,
    Tool,
    ToolFunction,
    ToolParameter,
    ToolResult,
    ToolSchema,
    json_type_name,
)

logger = logging.getLogger(__name__)

_TYPE_MAP: dict[Any, ParamType] = {
    str: ParamType.STRING,
    int: ParamType.INTEGER,
    float: ParamType.NUMBER,
    bool: ParamType.BOOLEAN,
    list: ParamType.ARRAY,
    dict: ParamType.OBJECT,
    type(None): ParamType.NULL,
}


def _python_type_to_param_types(py_type: Any) -> tuple[tuple[ParamType, ...], list[Any] | None]:
    """Convert a Python type hint to allowed parameter types and an optional enum.

    Args:
        py_type: Python type annotation

    Returns:
        Tuple of (allowed types, enum values or None)
    """
    origin = get_origin(py_type)

    if origin is Literal:
        values = list(get_args(py_type))
        found: list[ParamType] = []
        for value in values:
            param_type = _TYPE_MAP.get(type(value), ParamType.STRING)
            if param_type not in found:
                found.append(param_type)
        return tuple(found), values

    # Unions (including Optional) allow each member type; None marks the field nullable
    if origin is Union or origin is types.UnionType:
        allowed: list[ParamType] = []
        enum: list[Any] | None = None
        for arg in get_args(py_type):
            if arg is type(None):
                continue
            arg_types, arg_enum = _python_type_to_param_types(arg)
            enum = enum or arg_enum
            for param_type in arg_types:
                if param_type not in allowed:
                    allowed.append(param_type)
        return tuple(allowed) or (ParamType.STRING,), enum

    if origin is not None:
        py_type = origin

    return (_TYPE_MAP.get(py_type, ParamType.STRING),), None


def _parse_arg_descriptions(doc: str | None) -> dict[str, str]:
    """Read ``name: description`` lines from a docstring's Args section."""
    if not doc:
        return {}

    descriptions: dict[str, str] = {}
    in_args = False
    for raw_line in doc.split("\n"):
        line = raw_line.strip()
        if line in ("Args:", "Arguments:", "Parameters:"):
            in_args = True
            continue
        if not in_args:
            continue
        if line.endswith(":") and " " not in line:
            # Next section header (Returns:, Raises:, ...)
            break
        name, sep, desc = line.partition(":")
        if sep and name and " " not in name:
            descriptions[name] = desc.strip()
    return descriptions


def validate_parameters(parameters: dict[str, Any], schema: ToolSchema) -> str | None:
    """Check call parameters against a tool schema.

    Required fields must be present and non-null. Present fields must match
    one of the declared types and, when an enum is declared, one of its
    values. A null optional field counts as absent.

    Args:
        parameters: Decoded call arguments
        schema: Schema of the tool being called

    Returns:
        Error message for the first violation, or None when valid
    """
    for param in schema.parameters:
        if param.required and parameters.get(param.name) is None:
            return f"Missing required field: {param.name}"

    for param in schema.parameters:
        value = parameters.get(param.name)
        if value is None:
            continue

        if not any(t.matches(value) for t in param.types):
            expected = " or ".join(t.value for t in param.types)
            return f"Invalid type for {param.name}: expected {expected}, got {json_type_name(value)}"

        if param.enum and value not in param.enum:
            allowed = ", ".join(str(v) for v in param.enum)
            return f"Invalid value for {param.name}: must be one of {allowed}"

    return None


def coerce_parameters(parameters: dict[str, Any], schema: ToolSchema) -> dict[str, Any]:
    """Convert integral floats such as ``2.0`` to ``int`` for integer-only parameters.

    JSON does not distinguish ``2`` from ``2.0`` and models emit both; the
    validator accepts either, so tools must receive a real ``int``.
    """
    coerced = dict(parameters)
    for param in schema.parameters:
        value = coerced.get(param.name)
        if (
            isinstance(value, float)
            and value.is_integer()
            and ParamType.INTEGER in param.types
            and ParamType.NUMBER not in param.types
        ):
            coerced[param.name] = int(value)
    return coerced


class ToolRegistry:
    """Name-to-tool table with schema validation.

    Tools are kept in registration order. Instances are built per
    application and injected where needed. When a metrics recorder is
    attached, every execution is counted and its duration recorded.
    """

    def __init__(self, metrics: MetricsRecorder | None = None) -> None:
        self._tools: dict[str, Tool] = {}
        self.metrics = metrics

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def register(self, tool_obj: Tool) -> None:
        """Add a tool, replacing any tool already registered under its name."""
        name = tool_obj.schema.name
        if name in self._tools:
            logger.warning(f"Replacing registered tool: {name}")
        self._tools[name] = tool_obj

    def tool(
        self,
        description: str,
        dangerous: bool = False,
        name: str | None = None,
    ) -> Callable[[ToolFunction], ToolFunction]:
        """Decorator to register a function as a tool.

        Introspects the function signature, type hints and docstring to build
        the tool schema. ``Literal`` hints become enum constraints.

        Args:
            description: Human-readable description of what the tool does
            dangerous: Whether the tool performs potentially dangerous operations
            name: Tool name (defaults to the function name)

        Returns:
            Decorator function

        Example:
            @registry.tool(description="Read a file")
            async def file_read(path: str, max_lines: int | None = None) -> dict:
                '''Read a file.

                Args:
                    path: File path relative to the base directory
                    max_lines: Maximum number of lines to return
                '''
                ...
        """

        def decorator(fn: ToolFunction) -> ToolFunction:
            hints = get_type_hints(fn)
            sig = inspect.signature(fn)
            arg_docs = _parse_arg_descriptions(fn.__doc__)

            parameters: list[ToolParameter] = []
            for param_name, param in sig.parameters.items():
                if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
                    continue

                param_types, enum = _python_type_to_param_types(hints.get(param_name, str))
                required = param.default is inspect.Parameter.empty

                parameters.append(
                    ToolParameter(
                        name=param_name,
                        types=param_types,
                        description=arg_docs.get(param_name, f"Parameter {param_name}"),
                        required=required,
                        enum=enum,
                        default=None if required else param.default,
                    )
                )

            schema = ToolSchema(
                name=name or fn.__name__,
                description=description,
                parameters=parameters,
                dangerous=dangerous,
            )
            self.register(Tool(schema=schema, fn=fn))
            return fn

        return decorator

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def to_openai_format(self) -> list[dict[str, Any]]:
        return [t.schema.to_openai_format() for t in self._tools.values()]

    async def execute(
        self,
        name: str,
        parameters: dict[str, Any],
        context: Any = None,
    ) -> ToolResult:
        """Validate and run a tool.

        Never raises: unknown tools, validation failures and exceptions from
        the tool itself are all returned as failed results.

        Args:
            name: Registered tool name
            parameters: Decoded call arguments
            context: Request context used to tag log lines

        Returns:
            ToolResult with the execution duration in milliseconds
        """
        log = context.logger(logger) if context is not None else logger
        start = time.perf_counter()

        def elapsed_ms() -> float:
            return round((time.perf_counter() - start) * 1000, 3)

        tool_obj = self._tools.get(name)
        if tool_obj is None:
            log.warning(f"Tool not found: {name}")
            return self._finish(name, ToolResult.failure(f"Tool not found: {name}", elapsed_ms()))

        error = validate_parameters(parameters, tool_obj.schema)
        if error is not None:
            log.info(f"Rejected call to {name}: {error}")
            return self._finish(name, ToolResult.failure(error, elapsed_ms()))

        # Null optionals are treated as absent so the function default applies
        kwargs = {
            k: v for k, v in coerce_parameters(parameters, tool_obj.schema).items() if v is not None
        }
        known = {p.name for p in tool_obj.schema.parameters}
        unknown = sorted(set(kwargs) - known)
        if unknown:
            log.debug(f"Ignoring unknown parameters for {name}: {', '.join(unknown)}")
            kwargs = {k: v for k, v in kwargs.items() if k in known}

        try:
            result = await tool_obj.execute(**kwargs)
        except Exception as e:
            log.warning(f"Tool {name} failed: {e}")
            return self._finish(name, ToolResult.failure(str(e) or type(e).__name__, elapsed_ms()))

        duration = elapsed_ms()
        log.info(f"Tool {name} completed in {duration:.1f}ms")
        return self._finish(name, ToolResult(success=True, result=result, execution_time_ms=duration))

    def _finish(self, name: str, result: ToolResult) -> ToolResult:
        if self.metrics is not None:
            self.metrics.increment("tool_executions")
            if not result.success:
                self.metrics.increment("tool_failures")
            self.metrics.record_latency(f"tool.{name}", result.execution_time_ms)
        return result

    # Defined last so the builtin ``list`` stays usable in annotations above
    def list(self) -> list[ToolSchema]:
        """Registered tool schemas in registration order."""
        return [t.schema for t in self._tools.values()]
