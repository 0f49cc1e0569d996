"""Request-scoped context passed through a chat exchange."""

import logging
import uuid
from collections.abc import MutableMapping
from dataclasses import dataclass, field
from typing import Any


class ContextLogger(logging.LoggerAdapter):
    """Prefixes messages with the correlation id and attaches it as ``extra``."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        extra = dict(self.extra or {})
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return f"[{extra['correlation_id']}] {msg}", kwargs


@dataclass(frozen=True)
class RequestContext:
    """Identity and correlation data for one request."""

    correlation_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    user_id: str = "anonymous"
    session_id: str | None = None

    @classmethod
    def create(
        cls,
        user_id: str | None = None,
        correlation_id: str | None = None,
        session_id: str | None = None,
    ) -> "RequestContext":
        return cls(
            correlation_id=correlation_id or uuid.uuid4().hex,
            user_id=user_id or "anonymous",
            session_id=session_id,
        )

    def with_session(self, session_id: str) -> "RequestContext":
        return RequestContext(self.correlation_id, self.user_id, session_id)

    def logger(self, base: logging.Logger) -> ContextLogger:
        """Wrap ``base`` so every record carries this request's ids."""
        extra: dict[str, Any] = {"correlation_id": self.correlation_id, "user_id": self.user_id}
        if self.session_id:
            extra["session_id"] = self.session_id
        return ContextLogger(base, extra)
