"""
Playground Error Types

Failure taxonomy shared by the streaming chat path, the image path and the
session store. Only FrameParseError and RateLimitError are recovered locally;
everything else reaches the caller with the underlying message preserved.
"""

from __future__ import annotations


class PlaygroundError(Exception):
    """Base class for all playground errors."""


class TransportError(PlaygroundError):
    """Non-2xx status or network failure before any body bytes were consumed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RateLimitError(TransportError):
    """HTTP 429 from the proxy; the only condition RetryPolicy retries."""

    def __init__(self, message: str = "Rate limited", status_code: int = 429) -> None:
        super().__init__(message, status_code)


class StreamReadError(PlaygroundError):
    """Transport failure after streaming started; partial output stays rendered."""


class StreamAbortedError(StreamReadError):
    """The caller aborted the stream."""

    def __init__(self, message: str = "Stream aborted") -> None:
        super().__init__(message)


class FrameParseError(PlaygroundError):
    """A data frame whose payload is not a JSON object. Always skipped."""


class ChatValidationError(PlaygroundError):
    """Rejected operation (empty send, edit while streaming, edit of non-user message)."""
