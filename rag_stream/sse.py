"""rag_stream/sse.py"""

from __future__ import annotations

import codecs
import re
from collections.abc import AsyncIterable, AsyncIterator

# \r\n must win over a lone \r, so it is listed first.
_LINE_END = re.compile(r"\r\n|\n|\r")


class SSEDecoder:
    """Incremental Server-Sent-Events framer.

    Bytes go in via ``feed()`` in arbitrarily sized chunks; complete events
    (``{field: value}`` dicts) come out once their terminating blank line has
    been seen. Chunk boundaries do not need to line up with lines, events or
    even UTF-8 code points.
    """

    def __init__(self) -> None:
        # utf-8-sig drops a single leading BOM and keeps split multi-byte
        # sequences pending until the next chunk.
        self._decoder = codecs.getincrementaldecoder("utf-8-sig")(errors="replace")
        self._buffer = ""
        self._event: dict[str, str] = {}

    def feed(self, chunk: bytes) -> list[dict[str, str]]:
        """Decode *chunk* and return every event completed by it."""
        self._buffer += self._decoder.decode(chunk)
        return self._drain(final=False)

    def close(self) -> list[dict[str, str]]:
        """Flush decoder state at end of stream.

        A trailing line without terminator is still processed, and fields
        accumulated without a closing blank line are emitted as a last event.
        """
        self._buffer += self._decoder.decode(b"", final=True)
        events = self._drain(final=True)
        if self._buffer:
            self._process_line(self._buffer, events)
            self._buffer = ""
        if self._event:
            events.append(self._event)
            self._event = {}
        return events

    def _drain(self, final: bool) -> list[dict[str, str]]:
        events: list[dict[str, str]] = []
        while True:
            match = _LINE_END.search(self._buffer)
            if match is None:
                break
            # A \r at the very end may be the first half of \r\n.
            if not final and match.group() == "\r" and match.end() == len(self._buffer):
                break
            line = self._buffer[: match.start()]
            self._buffer = self._buffer[match.end() :]
            self._process_line(line, events)
        return events

    def _process_line(self, line: str, events: list[dict[str, str]]) -> None:
        if not line:
            events.append(self._event)
            self._event = {}
            return
        if line.startswith(":"):
            return
        name, sep, value = line.partition(":")
        if not sep:
            self._event[name] = ""
            return
        if value.startswith(" "):
            value = value[1:]
        if name == "data" and name in self._event:
            self._event[name] += "\n" + value
        else:
            self._event[name] = value


async def iter_sse_events(chunks: AsyncIterable[bytes]) -> AsyncIterator[dict[str, str]]:
    """Frame an async byte stream into SSE events, lazily."""
    decoder = SSEDecoder()
    async for chunk in chunks:
        for event in decoder.feed(chunk):
            yield event
    for event in decoder.close():
        yield event
