"""Upstream provider error taxonomy."""

from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Any

import httpx
import openai

# Retry hint used when a 429 response carries no usable header
DEFAULT_RETRY_AFTER = 60.0


class UpstreamErrorCode(str, Enum):
    """Closed set of provider failure classes."""

    BAD_REQUEST = "BAD_REQUEST"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    RATE_LIMITED = "RATE_LIMITED"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    TIMEOUT = "TIMEOUT"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


_STATUS_CODES: dict[int, tuple[UpstreamErrorCode, str]] = {
    400: (UpstreamErrorCode.BAD_REQUEST, "Invalid request to the model provider"),
    401: (UpstreamErrorCode.UNAUTHORIZED, "Invalid API key or authentication failure"),
    403: (UpstreamErrorCode.FORBIDDEN, "Access to this resource is forbidden"),
    404: (UpstreamErrorCode.NOT_FOUND, "The requested model or resource was not found"),
    429: (UpstreamErrorCode.RATE_LIMITED, "Rate limit exceeded. Please retry later"),
}


class UpstreamError(Exception):
    """A model provider call failed."""

    def __init__(
        self,
        code: UpstreamErrorCode,
        message: str,
        status: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status = status
        self.retry_after = retry_after
        if code is UpstreamErrorCode.RATE_LIMITED and retry_after is None:
            self.retry_after = DEFAULT_RETRY_AFTER

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "code": self.code.value,
            "message": self.message,
            "status": self.status,
        }
        if self.retry_after is not None:
            data["retry_after"] = self.retry_after
        return data

    def __repr__(self) -> str:
        return f"UpstreamError({self.code.value}, {self.message!r}, status={self.status})"


def _retry_after(headers: httpx.Headers | None) -> float:
    """Extract a retry delay in seconds from rate-limit response headers."""
    if not headers:
        return DEFAULT_RETRY_AFTER

    retry_ms = headers.get("retry-after-ms")
    if retry_ms:
        try:
            return max(float(retry_ms) / 1000, 0.0)
        except ValueError:
            pass

    retry = headers.get("retry-after")
    if retry:
        try:
            return max(float(retry), 0.0)
        except ValueError:
            pass
        try:
            when = parsedate_to_datetime(retry)
            return max((when - datetime.now(timezone.utc)).total_seconds(), 0.0)
        except (TypeError, ValueError):
            pass

    return DEFAULT_RETRY_AFTER


def map_upstream_error(error: BaseException) -> UpstreamError:
    """Fold a provider SDK or transport exception into an UpstreamError.

    Args:
        error: Exception raised while talking to the provider

    Returns:
        UpstreamError with the matching taxonomy code
    """
    if isinstance(error, UpstreamError):
        return error

    # APITimeoutError subclasses APIConnectionError, so it is checked first
    if isinstance(error, (openai.APITimeoutError, httpx.TimeoutException)):
        return UpstreamError(UpstreamErrorCode.TIMEOUT, "Request to the model provider timed out")

    if isinstance(error, (openai.APIConnectionError, httpx.TransportError)):
        return UpstreamError(
            UpstreamErrorCode.CONNECTION_ERROR, "Failed to connect to the model provider"
        )

    if isinstance(error, openai.APIStatusError):
        status = error.status_code
        if status == 429:
            return UpstreamError(
                UpstreamErrorCode.RATE_LIMITED,
                _STATUS_CODES[429][1],
                status=status,
                retry_after=_retry_after(error.response.headers),
            )
        if status in _STATUS_CODES:
            code, default_message = _STATUS_CODES[status]
            message = error.message if status == 400 and error.message else default_message
            return UpstreamError(code, message, status=status)
        if status >= 500:
            return UpstreamError(
                UpstreamErrorCode.INTERNAL_ERROR,
                "Model provider internal server error",
                status=status,
            )
        return UpstreamError(
            UpstreamErrorCode.UNKNOWN_ERROR,
            error.message or "An unknown error occurred",
            status=status,
        )

    if isinstance(error, openai.APIError):
        # Error events delivered inside an otherwise successful stream
        return UpstreamError(
            UpstreamErrorCode.UNKNOWN_ERROR, error.message or "Model provider returned an error"
        )

    return UpstreamError(UpstreamErrorCode.UNKNOWN_ERROR, str(error) or type(error).__name__)
