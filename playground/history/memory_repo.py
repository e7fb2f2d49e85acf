#!/usr/bin/env python3
"""
In-Memory Session Repository Implementation

Fast in-memory storage for playground sessions.

CONFIG: storage.type = "memory"
PURPOSE: Development/testing - all data lost on restart
FEATURES: Fastest performance, no persistence, simple cleanup
"""

from __future__ import annotations

import logging
from typing import Any

from .models import ChatSession
from .repository import SessionRepository, apply_patch

logger = logging.getLogger(__name__)


class InMemorySessionRepo(SessionRepository):
    """Fast in-memory storage - configure with type='memory'. Data lost on restart."""

    def __init__(self):
        # Insertion order doubles as recency: updated sessions move to the end
        self._sessions: dict[str, ChatSession] = {}

    async def list_sessions(self) -> list[ChatSession]:
        return [s.model_copy(deep=True) for s in reversed(self._sessions.values())]

    async def create_session(
        self,
        name: str = "New Chat",
        model: str = "",
        params: dict[str, Any] | None = None,
    ) -> ChatSession:
        session = ChatSession(name=name, model=model, params=dict(params or {}))
        self._sessions[session.id] = session
        logger.info("← Repository: created session %s", session.id)
        return session.model_copy(deep=True)

    async def get_session(self, session_id: str) -> ChatSession | None:
        session = self._sessions.get(session_id)
        return session.model_copy(deep=True) if session else None

    async def update_session(self, session_id: str, patch: dict[str, Any]) -> ChatSession | None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            logger.warning("Update for unknown session %s ignored", session_id)
            return None

        try:
            updated = apply_patch(session, patch)
        except ValueError:
            self._sessions[session_id] = session
            raise

        self._sessions[session_id] = updated
        logger.debug("← Repository: updated session %s (%s)", session_id, ", ".join(sorted(patch)))
        return updated.model_copy(deep=True)

    async def delete_session(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    async def close(self) -> None:
        return None
