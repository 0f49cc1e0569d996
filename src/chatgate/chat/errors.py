"""Chat pipeline error taxonomy."""

from enum import Enum
from typing import Any

from chatgate.llm.errors import UpstreamError, UpstreamErrorCode


class ChatErrorCode(str, Enum):
    """Failure classes of a chat exchange."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"
    # Only ever materialized as a failed ToolResult, never raised
    TOOL_ERROR = "TOOL_ERROR"
    NOT_FOUND = "NOT_FOUND"
    PIPELINE_ERROR = "PIPELINE_ERROR"


class ChatError(Exception):
    """A chat exchange failed.

    Raised by ``ChatOrchestrator.start`` before a stream opens, or from
    iteration of an open ``ChatStream``.
    """

    def __init__(
        self,
        code: ChatErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}

    @classmethod
    def upstream(cls, error: UpstreamError) -> "ChatError":
        return cls(ChatErrorCode.UPSTREAM_ERROR, error.message, details=error.to_dict())

    @property
    def upstream_code(self) -> UpstreamErrorCode | None:
        if self.code is not ChatErrorCode.UPSTREAM_ERROR or "code" not in self.details:
            return None
        return UpstreamErrorCode(self.details["code"])

    @property
    def retry_after(self) -> float | None:
        return self.details.get("retry_after")

    def to_dict(self) -> dict[str, Any]:
        """Structured error body."""
        data: dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.details:
            data["details"] = self.details
        return data

    def __repr__(self) -> str:
        return f"ChatError({self.code.value}, {self.message!r})"
