"""
Wire framing for streamed provider responses.

Two shapes are in use across providers:

* Server-Sent Events, either data-only (``data: {json}``) or with named
  events (``event: content_block_delta`` followed by ``data: {...}``).
* Newline-delimited JSON, one complete object per line.

Both are decoded from an arbitrary byte stream: chunk boundaries may fall in
the middle of a line or even in the middle of a multi-byte character.
"""

from __future__ import annotations

import codecs
from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator

DOCUMENT_EVENT = "document"


@dataclass(frozen=True)
class RawEvent:
    """
    One framed unit read off the wire.

    *event* is the SSE event name when the provider uses named events,
    ``DOCUMENT_EVENT`` for a whole non-streamed JSON body, else ``None``.
    """

    data: str
    event: str | None = None


async def iter_lines(chunks: AsyncIterable[bytes]) -> AsyncIterator[str]:
    """Split a byte stream into text lines, tolerant of partial chunks."""
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""
    async for raw in chunks:
        buffer += decoder.decode(raw)
        while "\n" in buffer:
            line, buffer = buffer.split("\n", 1)
            yield line.rstrip("\r")
    buffer += decoder.decode(b"", final=True)
    if buffer:
        yield buffer.rstrip("\r")


async def iter_sse(lines: AsyncIterable[str]) -> AsyncIterator[RawEvent]:
    """
    Group lines into SSE events.

    An event ends at a blank line.  Comment lines (``:``) and fields other
    than ``event``/``data`` are ignored.  A trailing event without its blank
    line is still emitted when the stream closes.
    """
    event: str | None = None
    data: list[str] = []
    async for line in lines:
        if not line:
            if data:
                yield RawEvent(data="\n".join(data), event=event)
            event, data = None, []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            event = value.strip() or None
        elif field == "data":
            data.append(value)
    if data:
        yield RawEvent(data="\n".join(data), event=event)


async def iter_ndjson(lines: AsyncIterable[str]) -> AsyncIterator[RawEvent]:
    async for line in lines:
        line = line.strip()
        if line:
            yield RawEvent(data=line)
