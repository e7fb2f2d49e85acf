"""Clients package containing the proxy chat and image clients."""

from __future__ import annotations

from .image_client import GenerationQueue, ImageClient
from .llm_client import LLMClient
from .models import GenerationTask, ImageResult, TaskStatus
from .retry import RetryPolicy, is_rate_limited

__all__ = [
    "GenerationQueue",
    "GenerationTask",
    "ImageClient",
    "ImageResult",
    "LLMClient",
    "RetryPolicy",
    "TaskStatus",
    "is_rate_limited",
]
