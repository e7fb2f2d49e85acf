"""
Chat Engine Data Models

Request payloads, stream states and store events for the streaming
conversation engine. Persisted records (messages, sessions, version
snapshots) live in ``playground.history.models``.
"""

from __future__ import annotations

from enum import Enum, IntEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from playground.history.models import Message

# ==============================================================================
# STATE MACHINE
# ==============================================================================


class StreamState(str, Enum):
    """Lifecycle of one request/response exchange."""

    IDLE = "idle"
    REQUESTING = "requesting"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_active(self) -> bool:
        return self in (StreamState.REQUESTING, StreamState.STREAMING)

    @property
    def is_terminal(self) -> bool:
        return self in (StreamState.COMPLETED, StreamState.FAILED)


class Direction(IntEnum):
    """Version cursor movement."""

    BACK = -1
    FORWARD = 1


# ==============================================================================
# REQUEST MODELS
# ==============================================================================


class ChatRequest(BaseModel):
    """Streaming chat completion request payload."""

    model_config = ConfigDict(extra="allow")  # Provider-specific generation params

    model: str
    messages: list[dict[str, Any]]
    stream: bool = True

    @classmethod
    def build(cls, model: str, messages: list[Message], params: dict[str, Any] | None = None) -> ChatRequest:
        """Build a request from session messages and generation params.

        ``reasoning_effort`` is dropped when set to "none"; ``None`` values are dropped.
        """
        extra = {k: v for k, v in (params or {}).items() if v is not None}
        if extra.get("reasoning_effort") == "none":
            extra.pop("reasoning_effort")
        for reserved in ("model", "messages", "stream"):
            extra.pop(reserved, None)
        return cls(model=model, messages=[m.to_api() for m in messages], stream=True, **extra)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


# ==============================================================================
# STORE EVENTS
# ==============================================================================


StoreEventKind = Literal[
    "messages",
    "session",
    "sessions",
    "versions",
    "attachments_consumed",
    "session_deleted",
]


class StoreEvent(BaseModel):
    """Notification emitted by ConversationStore to its subscribers."""

    kind: StoreEventKind
    session_id: str | None = None
    messages: list[Message] = Field(default_factory=list)
    attachments: list[str] = Field(default_factory=list)
