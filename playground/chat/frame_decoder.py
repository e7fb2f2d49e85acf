"""
Server-Sent Event Frame Decoding

Turns the chunked body of a streaming completion into ordered JSON records.
Lines look like ``data: {...}``; the literal ``data: [DONE]`` ends the stream.
Blank lines, comments and payloads that are not JSON objects are skipped so a
garbled keep-alive never aborts a response.
"""

from __future__ import annotations

import codecs
import json
import logging
from collections.abc import AsyncGenerator, AsyncIterable, Iterator
from typing import Any

from playground.errors import FrameParseError

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"


class FrameDecoder:
    """Incremental SSE decoder. Create one per request; instances are not reusable."""

    def __init__(self, prefix: str = DATA_PREFIX, sentinel: str = DONE_SENTINEL):
        self.prefix = prefix
        self.sentinel = sentinel
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._finished = False
        self.done = False
        self.skipped = 0

    def feed(self, chunk: bytes | str) -> Iterator[str]:
        """Consume one network chunk and yield payloads of completed data lines."""
        if self._finished:
            raise RuntimeError("FrameDecoder already finished; create a new one per request")

        text = self._decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
        self._buffer += text
        lines = self._buffer.split("\n")
        # The last fragment may be an incomplete line
        self._buffer = lines.pop()

        for line in lines:
            payload = self._payload(line)
            if payload is not None:
                yield payload

    def finish(self) -> Iterator[str]:
        """Flush the buffered fragment at natural end of stream."""
        if self._finished:
            return
        self._finished = True
        self._buffer += self._decoder.decode(b"", final=True)
        line, self._buffer = self._buffer, ""
        payload = self._payload(line)
        if payload is not None:
            yield payload

    def _payload(self, line: str) -> str | None:
        line = line.removesuffix("\r")
        if not line.startswith(self.prefix):
            return None
        return line[len(self.prefix) :]

    def parse(self, payload: str) -> dict[str, Any]:
        """Parse one payload into a record.

        Raises:
            FrameParseError: If the payload is not a JSON object
        """
        try:
            record = json.loads(payload)
        except json.JSONDecodeError as e:
            raise FrameParseError(f"Invalid JSON in stream frame: {e}") from e
        if not isinstance(record, dict):
            raise FrameParseError(f"Stream frame is not a JSON object: {type(record).__name__}")
        return record

    def _records_from(self, payloads: Iterator[str]) -> Iterator[dict[str, Any]]:
        for payload in payloads:
            if payload.strip() == self.sentinel:
                self.done = True
                return
            try:
                yield self.parse(payload)
            except FrameParseError as e:
                self.skipped += 1
                logger.debug("Skipping stream frame: %s", e)

    async def records(self, chunks: AsyncIterable[bytes | str]) -> AsyncGenerator[dict[str, Any]]:
        """Yield parsed records from a chunk stream until the sentinel or end of stream."""
        async for chunk in chunks:
            for record in self._records_from(self.feed(chunk)):
                yield record
            if self.done:
                return

        for record in self._records_from(self.finish()):
            yield record
