"""rag_stream/bus.py"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterable, AsyncIterator
from typing import TypeVar

T = TypeVar("T")


class AnswerCancelled(Exception):
    """Raised inside the read loop once its CancelToken has been cancelled."""


class CancelToken:
    """Cancellation scope for one in-flight answer request.

    Shared between the network read and the session's read loop. Cancelling
    wakes up a read that is currently suspended, so an abort takes effect even
    while the server is silent.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._event: asyncio.Event | None = None

    def cancel(self) -> None:
        """Signal cancellation. Next raise_if_cancelled() will throw."""
        self._cancelled = True
        if self._event is not None:
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise AnswerCancelled("Answer cancelled")

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    async def wait(self) -> None:
        if self._event is None:
            self._event = asyncio.Event()
            if self._cancelled:
                self._event.set()
        await self._event.wait()

    async def guard(self, source: AsyncIterable[T]) -> AsyncIterator[T]:
        """Re-yield *source* until it ends or this token is cancelled.

        Each pending read is raced against cancellation; on cancel the read
        is abandoned and AnswerCancelled is raised.
        """
        iterator = source.__aiter__()
        waiter = asyncio.ensure_future(self.wait())
        step: asyncio.Future[T] | None = None
        try:
            while True:
                self.raise_if_cancelled()
                step = asyncio.ensure_future(iterator.__anext__())
                done, _ = await asyncio.wait({step, waiter}, return_when=asyncio.FIRST_COMPLETED)
                if step not in done:
                    step.cancel()
                    with contextlib.suppress(asyncio.CancelledError, StopAsyncIteration):
                        await step
                    raise AnswerCancelled("Answer cancelled")
                try:
                    item = step.result()
                except StopAsyncIteration:
                    return
                yield item
        finally:
            waiter.cancel()
            # the consumer task was cancelled mid-read; do not leave the read running
            if step is not None and not step.done():
                step.cancel()
                with contextlib.suppress(asyncio.CancelledError, StopAsyncIteration):
                    await step
