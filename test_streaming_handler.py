#!/usr/bin/env python3
"""
Tests for the streaming exchange: status classification, ordered chunk
delivery, terminal callbacks and abort.
"""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from conftest import DONE_FRAME, FakeChatTransport, FakeResponse, reply, sse_frame
from playground.chat import ChatRequest, StreamSession, StreamState
from playground.chat.delta_accumulator import extract_delta
from playground.clients import LLMClient
from playground.config import Configuration
from playground.errors import StreamAbortedError, StreamReadError, TransportError
from playground.history import Message


def _request() -> ChatRequest:
    return ChatRequest.build("test-model", [Message(role="user", content="hi")], {"temperature": 0.5})


class Recorder:
    """Collects callback invocations for one session."""

    def __init__(self) -> None:
        self.chunks: list[str] = []
        self.done = 0
        self.errors: list[Exception] = []

    def on_chunk(self, record: dict) -> None:
        self.chunks.append(extract_delta(record).get("content", ""))

    def on_done(self) -> None:
        self.done += 1

    def on_error(self, error: Exception) -> None:
        self.errors.append(error)

    def session(self, transport, request: ChatRequest | None = None) -> StreamSession:
        return StreamSession(
            transport,
            request or _request(),
            on_chunk=self.on_chunk,
            on_done=self.on_done,
            on_error=self.on_error,
        )


async def _wait_for(predicate) -> None:
    for _ in range(1000):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


async def test_chunks_delivered_in_order_then_done_once():
    transport = FakeChatTransport(reply("a", "b", "c"))
    recorder = Recorder()
    session = recorder.session(transport)

    state = await session.run()

    assert state is StreamState.COMPLETED
    assert recorder.chunks == ["a", "b", "c"]
    assert recorder.done == 1
    assert recorder.errors == []
    assert transport.released == 1


async def test_request_carries_stream_flag_and_params():
    transport = FakeChatTransport(reply("ok"))
    await Recorder().session(transport).run()

    payload = transport.requests[0].to_payload()
    assert payload["stream"] is True
    assert payload["model"] == "test-model"
    assert payload["temperature"] == 0.5
    assert payload["messages"] == [{"role": "user", "content": "hi"}]


async def test_non_2xx_status_fails_before_any_chunk():
    transport = FakeChatTransport(FakeResponse([sse_frame("never")], status_code=500, body=b"upstream down"))
    recorder = Recorder()
    session = recorder.session(transport)

    state = await session.run()

    assert state is StreamState.FAILED
    assert recorder.chunks == []
    assert recorder.done == 0
    assert len(recorder.errors) == 1
    error = recorder.errors[0]
    assert isinstance(error, TransportError)
    assert error.status_code == 500
    assert str(error) == "HTTP error! status: 500 - upstream down"


async def test_read_error_mid_stream_keeps_delivered_chunks():
    transport = FakeChatTransport(FakeResponse([sse_frame("partial"), sse_frame("lost")], fail_after=1))
    recorder = Recorder()
    session = recorder.session(transport)

    state = await session.run()

    assert state is StreamState.FAILED
    assert recorder.chunks == ["partial"]
    assert isinstance(session.error, StreamReadError)
    assert "connection reset" in str(session.error)
    assert recorder.errors == [session.error]
    assert transport.released == 1


async def test_abort_from_another_task_fires_error_exactly_once():
    gate = asyncio.Event()
    transport = FakeChatTransport(FakeResponse([sse_frame("first"), sse_frame("second"), DONE_FRAME], gate=gate))
    recorder = Recorder()
    session = recorder.session(transport)

    task = asyncio.create_task(session.run())
    await _wait_for(lambda: recorder.chunks)
    assert session.state is StreamState.STREAMING

    session.abort()
    session.abort()
    state = await task
    gate.set()
    await asyncio.sleep(0)

    assert state is StreamState.FAILED
    assert isinstance(session.error, StreamAbortedError)
    assert recorder.chunks == ["first"]
    assert len(recorder.errors) == 1
    assert recorder.done == 0
    assert transport.released == 1


async def test_abort_inside_chunk_callback_stops_before_next_record():
    transport = FakeChatTransport(reply("one", "two", "three"))
    recorder = Recorder()
    session = recorder.session(transport)

    def on_chunk(record: dict) -> None:
        recorder.on_chunk(record)
        session.abort()

    session.on_chunk = on_chunk
    state = await session.run()

    assert state is StreamState.FAILED
    assert recorder.chunks == ["one"]
    assert len(recorder.errors) == 1
    assert isinstance(recorder.errors[0], StreamAbortedError)


async def test_abort_before_run_never_issues_request():
    transport = FakeChatTransport(reply("unused"))
    recorder = Recorder()
    session = recorder.session(transport)

    session.abort()
    state = await session.run()

    assert state is StreamState.FAILED
    assert transport.requests == []
    assert len(recorder.errors) == 1


async def test_session_cannot_be_reused():
    session = Recorder().session(FakeChatTransport(reply("x"), reply("y")))
    await session.run()

    with pytest.raises(RuntimeError):
        await session.run()


async def test_external_cancellation_propagates_after_failing():
    gate = asyncio.Event()
    transport = FakeChatTransport(FakeResponse([sse_frame("a"), sse_frame("b")], gate=gate))
    recorder = Recorder()
    session = recorder.session(transport)

    task = asyncio.create_task(session.run())
    await _wait_for(lambda: recorder.chunks)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert session.state is StreamState.FAILED
    assert len(recorder.errors) == 1
    assert transport.released == 1


# ---------- Against the real HTTP client ----------


def _mock_llm_client(handler) -> LLMClient:
    return LLMClient(Configuration(), transport=httpx.MockTransport(handler))


async def test_llm_client_streams_sse_body(proxy_env):
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        body = sse_frame("Hello") + sse_frame(" there") + DONE_FRAME
        return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

    async with _mock_llm_client(handler) as client:
        recorder = Recorder()
        state = await recorder.session(client).run()

    assert state is StreamState.COMPLETED
    assert recorder.chunks == ["Hello", " there"]
    request = seen[0]
    assert request.url.path == "/v1/chat/completions"
    assert request.headers["authorization"] == "Bearer test-key"
    assert request.headers["accept"] == "text/event-stream"
    assert json.loads(request.content)["stream"] is True


async def test_llm_client_unauthorized_is_transport_error(proxy_env):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": "invalid token"})

    async with _mock_llm_client(handler) as client:
        recorder = Recorder()
        await recorder.session(client).run()

    error = recorder.errors[0]
    assert isinstance(error, TransportError)
    assert error.status_code == 401


async def test_llm_client_connect_failure_is_transport_error(proxy_env):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused")

    async with _mock_llm_client(handler) as client:
        recorder = Recorder()
        await recorder.session(client).run()

    error = recorder.errors[0]
    assert isinstance(error, TransportError)
    assert not isinstance(error, StreamReadError)
    assert str(error) == "Network error: connection refused"
