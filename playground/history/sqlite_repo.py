#!/usr/bin/env python3
"""
SQLite Session Repository Implementation

Durable SQLite storage for playground sessions, including their version logs.

CONFIG: storage.type = "sqlite"
PURPOSE: Sessions survive restarts; one row per session
FEATURES: SQLite ops, async support, JSON serialization, recency ordering
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from typing import Any

import aiosqlite
from pydantic import TypeAdapter

from .models import ChatSession, Message, VersionSnapshot
from .repository import SessionRepository, apply_patch

logger = logging.getLogger(__name__)

_messages_adapter = TypeAdapter(list[Message])
_versions_adapter = TypeAdapter(list[VersionSnapshot])


class SQLiteSessionRepo(SessionRepository):
    """SQLite storage - configure with type='sqlite'."""

    def __init__(self, db_path: str = "playground_sessions.db"):
        self.db_path = db_path
        self._lock = asyncio.Lock()
        self._initialized = False

    async def _ensure_initialized(self):
        """Initialize database schema if not already done."""
        if self._initialized:
            return

        async with self._lock:
            if self._initialized:
                return

            async with aiosqlite.connect(self.db_path) as db:
                # Enable WAL mode for better concurrency
                await db.execute("PRAGMA journal_mode=WAL")
                await db.execute("PRAGMA synchronous=NORMAL")

                await db.execute("""
                    CREATE TABLE IF NOT EXISTS chat_sessions (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        model TEXT NOT NULL DEFAULT '',
                        params TEXT NOT NULL DEFAULT '{}',
                        messages TEXT NOT NULL DEFAULT '[]',
                        versions TEXT NOT NULL DEFAULT '[]',
                        version_index INTEGER NOT NULL DEFAULT -1,
                        reverted_at_index INTEGER NOT NULL DEFAULT -1,
                        created_at TIMESTAMP NOT NULL,
                        updated_at TIMESTAMP NOT NULL,
                        touched INTEGER NOT NULL
                    )
                """)
                await db.execute("""
                    CREATE INDEX IF NOT EXISTS idx_sessions_touched
                    ON chat_sessions(touched)
                """)
                await db.commit()

            self._initialized = True

    def _serialize_session(self, session: ChatSession) -> dict[str, Any]:
        """Convert ChatSession to database row format."""
        return {
            "id": session.id,
            "name": session.name,
            "model": session.model,
            "params": json.dumps(session.params),
            "messages": _messages_adapter.dump_json(session.messages).decode(),
            "versions": _versions_adapter.dump_json(session.versions).decode(),
            "version_index": session.version_index,
            "reverted_at_index": session.reverted_at_index,
            "created_at": session.created_at.isoformat(),
            "updated_at": session.updated_at.isoformat(),
        }

    def _deserialize_session(self, row: dict[str, Any]) -> ChatSession:
        """Convert database row to ChatSession."""
        return ChatSession(
            id=row["id"],
            name=row["name"],
            model=row["model"],
            params=json.loads(row["params"]),
            messages=_messages_adapter.validate_json(row["messages"]),
            versions=_versions_adapter.validate_json(row["versions"]),
            version_index=row["version_index"],
            reverted_at_index=row["reverted_at_index"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    async def _next_touched(self, db: aiosqlite.Connection) -> int:
        async with db.execute("SELECT COALESCE(MAX(touched), 0) + 1 FROM chat_sessions") as cursor:
            row = await cursor.fetchone()
            return row[0] if row else 1

    async def list_sessions(self) -> list[ChatSession]:
        await self._ensure_initialized()

        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute("SELECT * FROM chat_sessions ORDER BY touched DESC") as cursor:
                rows = await cursor.fetchall()
                return [self._deserialize_session(dict(row)) for row in rows]

    async def create_session(
        self,
        name: str = "New Chat",
        model: str = "",
        params: dict[str, Any] | None = None,
    ) -> ChatSession:
        await self._ensure_initialized()

        session = ChatSession(name=name, model=model, params=dict(params or {}))
        row_data = self._serialize_session(session)

        async with self._lock, aiosqlite.connect(self.db_path) as db:
            row_data["touched"] = await self._next_touched(db)
            columns = ", ".join(row_data.keys())
            placeholders = ", ".join("?" * len(row_data))
            await db.execute(
                f"INSERT INTO chat_sessions ({columns}) VALUES ({placeholders})",
                list(row_data.values()),
            )
            await db.commit()

        logger.info("← Repository: created session %s", session.id)
        return session

    async def get_session(self, session_id: str) -> ChatSession | None:
        await self._ensure_initialized()

        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute("SELECT * FROM chat_sessions WHERE id = ?", (session_id,)) as cursor:
                row = await cursor.fetchone()
                return self._deserialize_session(dict(row)) if row else None

    async def update_session(self, session_id: str, patch: dict[str, Any]) -> ChatSession | None:
        await self._ensure_initialized()

        async with self._lock, aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute("SELECT * FROM chat_sessions WHERE id = ?", (session_id,)) as cursor:
                row = await cursor.fetchone()
            if row is None:
                logger.warning("Update for unknown session %s ignored", session_id)
                return None

            updated = apply_patch(self._deserialize_session(dict(row)), patch)
            row_data = self._serialize_session(updated)
            row_data["touched"] = await self._next_touched(db)
            session_id_value = row_data.pop("id")
            assignments = ", ".join(f"{column} = ?" for column in row_data)
            await db.execute(
                f"UPDATE chat_sessions SET {assignments} WHERE id = ?",
                [*row_data.values(), session_id_value],
            )
            await db.commit()

        logger.debug("← Repository: updated session %s (%s)", session_id, ", ".join(sorted(patch)))
        return updated

    async def delete_session(self, session_id: str) -> bool:
        await self._ensure_initialized()

        async with self._lock, aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("DELETE FROM chat_sessions WHERE id = ?", (session_id,))
            await db.commit()
            return cursor.rowcount > 0

    async def close(self) -> None:
        # Connections are opened per operation
        return None
