#!/usr/bin/env python3
"""
Chat Session Data Models

This module contains all Pydantic models for persisted playground sessions:
messages, version snapshots and the session record itself.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

# ---------- Type definitions ----------

Role = Literal["user", "assistant"]


# ---------- Content models ----------


class TextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ImageURL(BaseModel):
    url: str


class ImagePart(BaseModel):
    type: Literal["image_url"] = "image_url"
    image_url: ImageURL

    @classmethod
    def from_url(cls, url: str) -> ImagePart:
        return cls(image_url=ImageURL(url=url))


Part = Annotated[TextPart | ImagePart, Field(discriminator="type")]


class Message(BaseModel):
    """One chat turn. Replaced, never mutated, while a stream updates it."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str | list[Part] = ""
    reasoning: str | None = None

    @property
    def text(self) -> str:
        """Plain text of the message, ignoring image parts."""
        if isinstance(self.content, str):
            return self.content
        return "".join(part.text for part in self.content if isinstance(part, TextPart))

    @property
    def images(self) -> list[ImagePart]:
        if isinstance(self.content, str):
            return []
        return [part for part in self.content if isinstance(part, ImagePart)]

    def to_api(self) -> dict[str, Any]:
        """Wire format for /chat/completions (reasoning stays client-side)."""
        if isinstance(self.content, str):
            return {"role": self.role, "content": self.content}
        return {
            "role": self.role,
            "content": [part.model_dump() for part in self.content],
        }


def build_user_message(text: str, images: list[str] | None = None) -> Message:
    """Plain string content for text-only input, ordered parts otherwise."""
    text = text.strip()
    if not images:
        return Message(role="user", content=text)

    parts: list[TextPart | ImagePart] = []
    if text:
        parts.append(TextPart(text=text))
    parts.extend(ImagePart.from_url(url) for url in images)
    return Message(role="user", content=parts)


# ---------- Version models ----------


def _check_version_index(version_index: int, length: int) -> None:
    # -1 means "no snapshot selected"
    if not -1 <= version_index < length:
        raise ValueError(f"version_index {version_index} out of range for {length} versions")


class VersionSnapshot(BaseModel):
    """Immutable copy of the full message list at one point in history."""

    model_config = ConfigDict(frozen=True)

    messages: tuple[Message, ...]
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    edit_index: int


class VersionLog(BaseModel):
    """Version log plus cursor, as returned by every VersionHistory operation."""

    model_config = ConfigDict(frozen=True)

    versions: tuple[VersionSnapshot, ...] = ()
    version_index: int = -1
    reverted_at_index: int = -1

    @model_validator(mode="after")
    def _check_cursor(self) -> VersionLog:
        _check_version_index(self.version_index, len(self.versions))
        return self


# ---------- Session model ----------


class ChatSession(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str = "New Chat"
    model: str = ""
    params: dict[str, Any] = Field(default_factory=dict)
    messages: list[Message] = Field(default_factory=list)
    versions: list[VersionSnapshot] = Field(default_factory=list)
    version_index: int = -1
    reverted_at_index: int = -1
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @model_validator(mode="after")
    def _check_cursor(self) -> ChatSession:
        _check_version_index(self.version_index, len(self.versions))
        return self

    @property
    def version_log(self) -> VersionLog:
        return VersionLog(
            versions=tuple(self.versions),
            version_index=self.version_index,
            reverted_at_index=self.reverted_at_index,
        )


def version_patch(log: VersionLog) -> dict[str, Any]:
    """Session update patch carrying the version fields of ``log``."""
    return {
        "versions": list(log.versions),
        "version_index": log.version_index,
        "reverted_at_index": log.reverted_at_index,
    }
