#!/usr/bin/env python3
"""
Chat Session Module

Session records, version snapshots and their storage backends.
"""

from __future__ import annotations

from .factory import create_repository
from .memory_repo import InMemorySessionRepo
from .models import (
    ChatSession,
    ImagePart,
    Message,
    TextPart,
    VersionLog,
    VersionSnapshot,
    build_user_message,
)
from .repository import SessionRepository
from .sqlite_repo import SQLiteSessionRepo

__all__ = [
    "ChatSession",
    "ImagePart",
    "InMemorySessionRepo",
    "Message",
    "SQLiteSessionRepo",
    "SessionRepository",
    "TextPart",
    "VersionLog",
    "VersionSnapshot",
    "build_user_message",
    "create_repository",
]
