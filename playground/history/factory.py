#!/usr/bin/env python3
"""
Repository Factory

Factory function to create the session repository based on configuration.
"""

from __future__ import annotations

import logging
from typing import Any

from .memory_repo import InMemorySessionRepo
from .repository import SessionRepository
from .sqlite_repo import SQLiteSessionRepo

logger = logging.getLogger(__name__)


def create_repository(storage_config: dict[str, Any]) -> SessionRepository:
    """Create the session repository for ``storage.type`` ("sqlite" or "memory")."""
    storage_type = storage_config.get("type", "sqlite")

    if storage_type == "memory":
        logger.info("Using in-memory session storage (data lost on restart)")
        return InMemorySessionRepo()

    if storage_type == "sqlite":
        db_path = storage_config.get("db_path", "playground_sessions.db")
        logger.info("Using SQLite session storage at %s", db_path)
        return SQLiteSessionRepo(db_path)

    raise ValueError(f"Unknown storage type '{storage_type}' (expected 'sqlite' or 'memory')")
