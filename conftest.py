"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx
import pytest

from playground.chat import ChatRequest, ConversationStore
from playground.history import InMemorySessionRepo


def sse_frame(content: str | None = None, reasoning: str | None = None, **extra: Any) -> bytes:
    """One ``data:`` line carrying a chat completion delta."""
    delta: dict[str, Any] = {}
    if content is not None:
        delta["content"] = content
    if reasoning is not None:
        delta["reasoning_content"] = reasoning
    record = {"choices": [{"index": 0, "delta": delta}], **extra}
    return f"data: {json.dumps(record)}\n\n".encode()


DONE_FRAME = b"data: [DONE]\n\n"


class FakeResponse:
    """Streaming response scripted as a list of byte chunks."""

    def __init__(
        self,
        chunks: list[bytes],
        status_code: int = 200,
        body: bytes = b"",
        fail_after: int | None = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.chunks = chunks
        self.status_code = status_code
        self.body = body
        self.fail_after = fail_after
        self.gate = gate
        self.delivered = 0

    async def aread(self) -> bytes:
        return self.body

    async def aiter_bytes(self) -> AsyncIterator[bytes]:
        for index, chunk in enumerate(self.chunks):
            if self.fail_after is not None and index == self.fail_after:
                raise httpx.ReadError("connection reset")
            if self.gate is not None and index > 0:
                # Hold the stream open until the test releases it
                await self.gate.wait()
            self.delivered += 1
            yield chunk


class FakeChatTransport:
    """Chat transport returning scripted responses in order."""

    def __init__(self, *responses: FakeResponse) -> None:
        self.responses = list(responses)
        self.requests: list[ChatRequest] = []
        self.released = 0

    def queue(self, response: FakeResponse) -> None:
        self.responses.append(response)

    @asynccontextmanager
    async def stream(self, request: ChatRequest) -> AsyncIterator[FakeResponse]:
        self.requests.append(request)
        response = self.responses.pop(0)
        try:
            yield response
        finally:
            self.released += 1


def reply(*contents: str) -> FakeResponse:
    """A well-formed streamed reply made of the given content deltas."""
    return FakeResponse([sse_frame(c) for c in contents] + [DONE_FRAME])


@pytest.fixture
def transport() -> FakeChatTransport:
    return FakeChatTransport()


@pytest.fixture
def repo() -> InMemorySessionRepo:
    return InMemorySessionRepo()


@pytest.fixture
def store(transport: FakeChatTransport, repo: InMemorySessionRepo) -> ConversationStore:
    return ConversationStore(transport, repo, default_model="test-model")


@pytest.fixture
def proxy_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Proxy credential and no override config file."""
    monkeypatch.setenv("PROXY_API_KEY", "test-key")
    monkeypatch.delenv("PLAYGROUND_CONFIG", raising=False)
