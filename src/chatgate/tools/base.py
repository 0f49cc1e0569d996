"""Base types for the tool system."""

import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any


class ParamType(str, Enum):
    """JSON Schema primitive types a tool parameter may accept."""

    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"
    NULL = "null"

    def matches(self, value: Any) -> bool:
        """Check a decoded JSON value against this type."""
        # bool is an int subclass in Python but a distinct JSON type
        if self is ParamType.BOOLEAN:
            return isinstance(value, bool)
        if isinstance(value, bool):
            return False
        if self is ParamType.INTEGER:
            return isinstance(value, int) or (isinstance(value, float) and value.is_integer())
        if self is ParamType.NUMBER:
            return isinstance(value, (int, float))
        if self is ParamType.STRING:
            return isinstance(value, str)
        if self is ParamType.ARRAY:
            return isinstance(value, list)
        if self is ParamType.OBJECT:
            return isinstance(value, dict)
        return value is None


def json_type_name(value: Any) -> str:
    """Name the JSON type of a decoded value, for error messages."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


@dataclass
class ToolParameter:
    """Definition of a tool parameter."""

    name: str
    types: tuple[ParamType, ...]
    description: str
    required: bool = True
    enum: list[Any] | None = None
    default: Any = None

    def to_json_schema(self) -> dict[str, Any]:
        type_names = [t.value for t in self.types]
        schema: dict[str, Any] = {
            "type": type_names[0] if len(type_names) == 1 else type_names,
            "description": self.description,
        }
        if self.enum:
            schema["enum"] = list(self.enum)
        if not self.required and self.default is not None:
            schema["default"] = self.default
        return schema


@dataclass
class ToolSchema:
    """JSON Schema representation of a tool for LLM function calling."""

    name: str
    description: str
    parameters: list[ToolParameter]
    dangerous: bool = False

    @property
    def required(self) -> list[str]:
        return [p.name for p in self.parameters if p.required]

    def get_parameter(self, name: str) -> ToolParameter | None:
        for param in self.parameters:
            if param.name == name:
                return param
        return None

    def to_definition(self) -> dict[str, Any]:
        """Tool definition with its JSON Schema parameter spec."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": {
                "type": "object",
                "properties": {p.name: p.to_json_schema() for p in self.parameters},
                "required": self.required,
            },
        }

    def to_openai_format(self) -> dict[str, Any]:
        """Convert to OpenAI function calling format.

        Returns:
            Dictionary matching OpenAI's function schema format
        """
        return {"type": "function", "function": self.to_definition()}


@dataclass(frozen=True)
class ToolResult:
    """Outcome of a single tool invocation.

    Persisted verbatim as the content of a ``tool`` message so the model can
    react to failures in its next turn.
    """

    success: bool
    result: Any = None
    error: str | None = None
    execution_time_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": self.success}
        if self.result is not None:
            data["result"] = self.result
        if self.error is not None:
            data["error"] = self.error
        data["executionTimeMs"] = self.execution_time_ms
        return data

    def to_json(self) -> str:
        """Serialize for persistence as tool message content."""
        return json.dumps(self.to_dict(), default=str, ensure_ascii=False)

    @classmethod
    def from_json(cls, content: str) -> "ToolResult":
        """Parse the content of a persisted tool message."""
        data = json.loads(content)
        return cls(
            success=bool(data["success"]),
            result=data.get("result"),
            error=data.get("error"),
            execution_time_ms=float(data.get("executionTimeMs", 0.0)),
        )

    @classmethod
    def failure(cls, error: str, execution_time_ms: float = 0.0) -> "ToolResult":
        return cls(success=False, error=error, execution_time_ms=execution_time_ms)


# Tool function signature: async function returning a JSON-serializable payload
ToolFunction = Callable[..., Awaitable[Any]]


@dataclass
class Tool:
    """A tool that the model can call."""

    schema: ToolSchema
    fn: ToolFunction

    async def execute(self, **kwargs: Any) -> Any:
        """Execute the tool with given arguments.

        Args:
            **kwargs: Tool arguments

        Returns:
            Tool result payload
        """
        return await self.fn(**kwargs)
