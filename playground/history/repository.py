#!/usr/bin/env python3
"""
Session Repository Interface

This module defines the storage protocol the conversation engine uses to
persist chat sessions, their messages and their version logs.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Protocol

from .models import ChatSession

# Fields a caller may patch through update_session
UPDATABLE_FIELDS = frozenset(
    {
        "name",
        "model",
        "params",
        "messages",
        "versions",
        "version_index",
        "reverted_at_index",
    }
)


def apply_patch(session: ChatSession, patch: dict[str, Any]) -> ChatSession:
    """
    Return a validated copy of ``session`` with ``patch`` applied.

    Raises:
        ValueError: If the patch names a field that cannot be updated
    """
    unknown = set(patch) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update session fields: {sorted(unknown)}")

    data = session.model_dump()
    data.update(patch)
    data["updated_at"] = datetime.now(UTC)
    return ChatSession.model_validate(data)


# ---------- Repository interface ----------


class SessionRepository(Protocol):
    """Protocol defining the interface for session storage backends."""

    async def list_sessions(self) -> list[ChatSession]:
        """All sessions, most recently updated first."""
        ...

    async def create_session(
        self,
        name: str = "New Chat",
        model: str = "",
        params: dict[str, Any] | None = None,
    ) -> ChatSession: ...

    async def get_session(self, session_id: str) -> ChatSession | None: ...

    async def update_session(self, session_id: str, patch: dict[str, Any]) -> ChatSession | None:
        """Apply ``patch`` and bump ``updated_at``. Returns None for unknown ids."""
        ...

    async def delete_session(self, session_id: str) -> bool: ...

    async def close(self) -> None: ...
