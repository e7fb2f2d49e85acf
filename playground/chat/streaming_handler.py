"""
Streaming Response Handler

Drives one request/response exchange against the chat transport:
- Request issue and HTTP status classification
- SSE frame decoding into ordered records
- Per-record chunk callback, in arrival order
- Exactly-once terminal callback (done or error)
- Caller abort with transport release

Streaming bugs are hard to debug, so every state transition is logged.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager
from typing import Any, Protocol

import httpx

from playground.chat.frame_decoder import FrameDecoder
from playground.chat.logging_utils import log_stream_chunk
from playground.chat.models import ChatRequest, StreamState
from playground.errors import (
    PlaygroundError,
    StreamAbortedError,
    StreamReadError,
    TransportError,
)

logger = logging.getLogger(__name__)

# Maximum number of response body characters kept in an HTTP error message
ERROR_BODY_LIMIT = 500

ChunkCallback = Callable[[dict[str, Any]], None]
DoneCallback = Callable[[], None]
ErrorCallback = Callable[[PlaygroundError], None]


class StreamResponse(Protocol):
    """The part of an HTTP response the stream session reads."""

    status_code: int

    def aiter_bytes(self) -> AsyncIterator[bytes]: ...

    async def aread(self) -> bytes: ...


class ChatTransport(Protocol):
    """Issues a streaming chat request; status must be known before body bytes."""

    def stream(self, request: ChatRequest) -> AbstractAsyncContextManager[StreamResponse]: ...


class StreamSession:
    """One streaming exchange: Idle → Requesting → Streaming → Completed | Failed."""

    def __init__(
        self,
        transport: ChatTransport,
        request: ChatRequest,
        on_chunk: ChunkCallback | None = None,
        on_done: DoneCallback | None = None,
        on_error: ErrorCallback | None = None,
    ):
        self.transport = transport
        self.request = request
        self.on_chunk = on_chunk
        self.on_done = on_done
        self.on_error = on_error

        self.state = StreamState.IDLE
        self.error: PlaygroundError | None = None
        self.chunk_count = 0
        self._task: asyncio.Task[Any] | None = None
        self._abort_requested = False
        self._terminal_fired = False

    @property
    def is_active(self) -> bool:
        return self.state.is_active

    def abort(self) -> None:
        """
        Abort the exchange. Treated as a terminal error, never silently dropped.

        From another task the running task is cancelled, which exits the
        transport context and releases the connection. From inside a chunk
        callback the read loop stops before the next record.
        """
        if self.state.is_terminal or self._abort_requested:
            return

        logger.info("→ LLM: abort requested for model=%s (state=%s)", self.request.model, self.state.value)
        self._abort_requested = True

        if self.state is StreamState.IDLE:
            self._fail(StreamAbortedError())
            return

        if self._task is not None and self._task is not asyncio.current_task():
            self._task.cancel()

    async def run(self) -> StreamState:
        """
        Issue the request and stream it to completion.

        Returns:
            The terminal state (COMPLETED or FAILED)

        Raises:
            RuntimeError: If the session was already run
            asyncio.CancelledError: If cancelled by anything other than abort()
        """
        if self.state is StreamState.FAILED and self._abort_requested:
            # Aborted before it started
            return self.state
        if self.state is not StreamState.IDLE:
            raise RuntimeError("StreamSession already used; create a new one per request")

        self._task = asyncio.current_task()
        self._transition(StreamState.REQUESTING)
        logger.info(
            "→ LLM: starting streaming request, model=%s, messages=%d",
            self.request.model,
            len(self.request.messages),
        )

        try:
            await self._exchange()
        except asyncio.CancelledError:
            if self._abort_requested:
                if self._task is not None:
                    self._task.uncancel()
                self._fail(StreamAbortedError())
                return self.state
            self._fail(StreamAbortedError("Stream cancelled"))
            raise
        except PlaygroundError as e:
            self._fail(e)
            return self.state
        except Exception as e:
            # Unexpected failures still close the session before propagating
            self._fail(StreamReadError(f"Unexpected stream failure: {e}"))
            raise

        if self._abort_requested:
            self._fail(StreamAbortedError())
        else:
            self._complete()
        return self.state

    async def _exchange(self) -> None:
        decoder = FrameDecoder()
        try:
            async with self.transport.stream(self.request) as response:
                if not 200 <= response.status_code < 300:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    message = f"HTTP error! status: {response.status_code}"
                    if body.strip():
                        message += f" - {body[:ERROR_BODY_LIMIT]}"
                    if response.status_code == 401:
                        logger.error("Authentication failed for streaming request; check the proxy credential")
                    raise TransportError(message, response.status_code)

                self._transition(StreamState.STREAMING)

                async for record in decoder.records(response.aiter_bytes()):
                    if self._abort_requested:
                        break
                    self.chunk_count += 1
                    log_stream_chunk(record, self.chunk_count)
                    if self.on_chunk is not None:
                        self.on_chunk(record)

        except (httpx.HTTPError, OSError) as e:
            if self.state is StreamState.STREAMING:
                logger.error("HTTP error during streaming: %s (%s)", e, type(e).__name__)
                raise StreamReadError(f"Stream interrupted: {e!s}") from e
            logger.error("HTTP error before streaming: %s (%s)", e, type(e).__name__)
            raise TransportError(f"Network error: {e!s}") from e

        if decoder.skipped:
            logger.debug("Skipped %d unparseable stream frame(s)", decoder.skipped)

    def _transition(self, new_state: StreamState) -> None:
        logger.debug("Stream state %s → %s", self.state.value, new_state.value)
        self.state = new_state

    def _complete(self) -> None:
        if self._terminal_fired:
            return
        self._terminal_fired = True
        self._transition(StreamState.COMPLETED)
        logger.info("← LLM: streaming completed, chunks=%d", self.chunk_count)
        if self.on_done is not None:
            self.on_done()

    def _fail(self, error: PlaygroundError) -> None:
        if self._terminal_fired:
            return
        self._terminal_fired = True
        self.error = error
        self._transition(StreamState.FAILED)
        logger.warning("← LLM: streaming failed after %d chunk(s): %s", self.chunk_count, error)
        if self.on_error is not None:
            self.on_error(error)
