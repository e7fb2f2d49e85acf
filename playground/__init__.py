"""Streaming chat and image playground engine for an OpenAI-compatible AI proxy."""
