"""
Image Generation Data Models

Tasks and results for the image playground flow.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

GenerationMode = Literal["txt2img", "img2img"]


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


def label_reference_images(prompt: str, image_count: int) -> str:
    """Prefix a prompt with "Image 1, Image 2, ..." labels so it can refer to references by number."""
    if image_count == 0:
        return prompt
    labels = ", ".join(f"Image {i + 1}" for i in range(image_count))
    return f"[Reference images provided: {labels}]\n\nUser request: {prompt}"


class GenerationTask(BaseModel):
    """One image generation request; lives only while it is in flight."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    prompt: str  # As sent, labelled for img2img
    original_prompt: str
    model: str
    mode: GenerationMode = "txt2img"
    reference_images: list[str] = Field(default_factory=list)  # Base64 or data URLs, in order
    status: TaskStatus = TaskStatus.PENDING
    error: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ImageResult(BaseModel):
    """Images returned by a txt2img/img2img call."""

    model_config = ConfigDict(extra="allow")

    images: list[str] = Field(default_factory=list)
    info: Any = None

    @property
    def first(self) -> str | None:
        return self.images[0] if self.images else None
