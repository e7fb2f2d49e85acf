"""
Delta Accumulation

Folds the ``choices[0].delta`` of each streamed record into the running
content and reasoning text of one in-flight assistant message.
"""

from __future__ import annotations

from typing import Any

from playground.history.models import Message

# Providers disagree on where streamed reasoning goes; first match wins
REASONING_FIELDS = ("reasoning_content", "reasoning")


def extract_delta(record: dict[str, Any]) -> dict[str, Any]:
    """Return the first choice's delta, or an empty dict for records without one."""
    choices = record.get("choices")
    if not isinstance(choices, list) or not choices:
        return {}
    choice = choices[0]
    if not isinstance(choice, dict):
        return {}
    delta = choice.get("delta")
    return delta if isinstance(delta, dict) else {}


class DeltaAccumulator:
    """Running (content, reasoning) pair for one assistant message."""

    def __init__(self) -> None:
        self.content = ""
        self.reasoning = ""
        self.chunk_count = 0
        self.finish_reason: str | None = None

    def add(self, record: dict[str, Any]) -> tuple[str, str]:
        """Fold one record and return the cumulative (content, reasoning)."""
        self.chunk_count += 1
        delta = extract_delta(record)

        content = delta.get("content")
        if isinstance(content, str) and content:
            self.content += content

        for field in REASONING_FIELDS:
            reasoning = delta.get(field)
            if isinstance(reasoning, str) and reasoning:
                self.reasoning += reasoning
                break

        choices = record.get("choices")
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            self.finish_reason = choices[0].get("finish_reason") or self.finish_reason

        return self.content, self.reasoning

    def to_message(self) -> Message:
        """A fresh assistant message carrying the accumulated text."""
        return Message(role="assistant", content=self.content, reasoning=self.reasoning)
