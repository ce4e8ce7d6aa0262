"""Shared pytest fixtures and helpers."""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import json
from typing import Any

import pytest


def sse_data(payload: Any) -> bytes:
    """One SSE event whose data field is *payload* (JSON-encoded unless already a string)."""
    text = payload if isinstance(payload, str) else json.dumps(payload)
    return f"data: {text}\n\n".encode()


def response_event(action: str, result: Any, done: bool = False) -> bytes:
    """A ``{type: response}`` envelope wrapping a JSON-encoded action message."""
    message = json.dumps({"action": action, "result": result, "done": done})
    return sse_data({"type": "response", "message": message})


@dataclasses.dataclass
class FakeStream:
    chunks: list[bytes] = dataclasses.field(default_factory=list)
    hang: bool = False  # block forever after the last chunk
    error: Exception | None = None  # raised instead of opening the stream


class FakeStreamClient:
    """Stands in for RagClient.open_stream; serves queued FakeStreams in order."""

    def __init__(self, *streams: FakeStream) -> None:
        self.streams = list(streams)
        self.calls: list[dict[str, Any]] = []
        self.closed = 0

    @contextlib.asynccontextmanager
    async def open_stream(self, method, path, body=None, api_key_position="query-params"):
        self.calls.append(
            {"method": method, "path": path, "body": body, "api_key_position": api_key_position}
        )
        stream = self.streams.pop(0)
        if stream.error is not None:
            raise stream.error
        try:
            yield _replay(stream)
        finally:
            self.closed += 1


async def _replay(stream: FakeStream):
    for chunk in stream.chunks:
        await asyncio.sleep(0)
        yield chunk
    if stream.hang:
        await asyncio.Event().wait()


@pytest.fixture()
def recorder():
    """Collects every state snapshot passed to an observer callback."""
    snapshots: list[list[Any]] = []

    def record(state):
        snapshots.append(state)

    record.snapshots = snapshots
    return record
