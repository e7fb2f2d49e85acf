"""
Chat Logging Utilities

Shared logging functionality with feature control.
"""

from __future__ import annotations

import logging
from typing import Any

logger = logging.getLogger(__name__)

# module name -> {feature: enabled}, filled from the logging config at startup
_module_features: dict[str, dict[str, bool]] = {}


def set_module_features(module: str, features: dict[str, bool]) -> None:
    """Replace the feature flags for ``module``."""
    _module_features[module] = dict(features)


def should_log_feature(module: str, feature: str) -> bool:
    """Check if a specific logging feature should be enabled."""
    return bool(_module_features.get(module, {}).get(feature, False))


def _truncate(text: str, limit: int) -> str:
    if text and len(text) > limit:
        return text[:limit] + "..."
    return text


def log_llm_reply(reply: dict[str, Any], context: str, truncate_length: int = 500) -> None:
    """
    LLM reply logging with feature control and truncation.

    Args:
        reply: Dict with ``content``, optional ``reasoning``, ``model``, ``chunks``
            and ``finish_reason``
        context: Descriptive context for the log entry
        truncate_length: Maximum characters logged per text field
    """
    if not should_log_feature("chat", "llm_replies"):
        return

    content = _truncate(reply.get("content", ""), truncate_length)
    reasoning = _truncate(reply.get("reasoning", ""), truncate_length)

    log_parts = [f"LLM Reply ({context}):"]

    # Reasoning first, the way reasoning models emit it
    if reasoning:
        log_parts.append(f"Reasoning: {reasoning}")

    if content:
        log_parts.append(f"Content: {content}")

    if reply.get("chunks") is not None:
        log_parts.append(f"Chunks: {reply['chunks']}")

    if reply.get("finish_reason"):
        log_parts.append(f"Finish: {reply['finish_reason']}")

    log_parts.append(f"Model: {reply.get('model', 'unknown')}")

    logger.info(" | ".join(log_parts))


def log_stream_chunk(record: dict[str, Any], index: int) -> None:
    """Debug-log one raw stream record when the stream_chunks feature is on."""
    if should_log_feature("chat", "stream_chunks"):
        logger.debug("← LLM: chunk %d: %s", index, record)
