"""Server-sent event framing for the build stream.

Turns raw byte chunks into event payload strings. Events are separated by a
blank line and may span several ``data:`` lines, which are joined with
``\\n``. Lines starting with ``:`` are heartbeats. A payload equal to the
``[DONE]`` sentinel ends the stream.
"""

import codecs
import logging
from collections.abc import AsyncIterable, AsyncIterator, Iterable, Iterator

log = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


class EventStreamDecoder:
    """Incremental decoder for a server-sent event byte stream.

    Chunk boundaries may fall anywhere, including inside a line or inside a
    multibyte UTF-8 sequence; the decoder buffers until a frame is complete.
    """

    def __init__(self, sentinel: str = DONE_SENTINEL) -> None:
        self.sentinel = sentinel
        self.done = False
        self._text_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._data_lines: list[str] = []

    def feed(self, chunk: bytes | str) -> list[str]:
        """Consume a chunk and return the payloads it completed."""
        if self.done or not chunk:
            return []
        if isinstance(chunk, bytes):
            chunk = self._text_decoder.decode(chunk)
        self._buffer += chunk

        payloads: list[str] = []
        while not self.done:
            newline = self._buffer.find("\n")
            if newline < 0:
                break
            line = self._buffer[:newline]
            self._buffer = self._buffer[newline + 1 :]
            payload = self._consume_line(line)
            if payload is not None:
                self._emit(payload, payloads)
        return payloads

    def close(self) -> list[str]:
        """Flush the tail of a stream that ended, with or without a sentinel."""
        if self.done:
            return []
        tail = self._buffer + self._text_decoder.decode(b"", final=True)
        self._buffer = ""

        payloads: list[str] = []
        if tail:
            payload = self._consume_line(tail)
            if payload is not None:
                self._emit(payload, payloads)
        if not self.done and self._data_lines:
            payload = "\n".join(self._data_lines)
            self._data_lines = []
            self._emit(payload, payloads)
        self.done = True
        return payloads

    def _consume_line(self, line: str) -> str | None:
        """Process one line; returns a payload when a blank line ends an event."""
        trimmed = line.rstrip("\r").strip()

        if not trimmed:
            if not self._data_lines:
                return None
            payload = "\n".join(self._data_lines)
            self._data_lines = []
            return payload

        if trimmed.startswith(":"):
            return None

        if trimmed.startswith("data:"):
            value = trimmed[len("data:") :]
            if value.startswith(" "):
                value = value[1:]
            self._data_lines.append(value)
        else:
            self._data_lines.append(trimmed)
        return None

    def _emit(self, payload: str, payloads: list[str]) -> None:
        if not payload:
            return
        if payload == self.sentinel:
            log.debug("End-of-stream sentinel received")
            self.done = True
            self._data_lines = []
            self._buffer = ""
            return
        payloads.append(payload)


def iter_payloads(chunks: Iterable[bytes | str], sentinel: str = DONE_SENTINEL) -> Iterator[str]:
    """Decode a synchronous chunk iterable into event payloads."""
    decoder = EventStreamDecoder(sentinel)
    for chunk in chunks:
        yield from decoder.feed(chunk)
        if decoder.done:
            return
    yield from decoder.close()


async def aiter_payloads(
    chunks: AsyncIterable[bytes | str], sentinel: str = DONE_SENTINEL
) -> AsyncIterator[str]:
    """Decode an asynchronous chunk stream into event payloads."""
    decoder = EventStreamDecoder(sentinel)
    async for chunk in chunks:
        for payload in decoder.feed(chunk):
            yield payload
        if decoder.done:
            return
    for payload in decoder.close():
        yield payload
