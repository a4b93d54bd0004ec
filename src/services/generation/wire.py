"""Hand-off between a server-owned generation task and one HTTP response."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator


_EOF = object()


class WireChannel:
    """Queue of serialized SSE frames for a single live client.

    The generation task calls :meth:`send`; the response generator drains
    :meth:`frames`. Once the client goes away the response calls
    :meth:`detach` and every later send becomes a no-op, so the task keeps
    running without a reader.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._detached = False
        self._closed = False

    @property
    def writable(self) -> bool:
        return not (self._detached or self._closed)

    @property
    def detached(self) -> bool:
        return self._detached

    def send(self, frame: str) -> bool:
        """Queue ``frame`` for the client; returns False when nobody is listening."""
        if not self.writable:
            return False
        self._queue.put_nowait(frame)
        return True

    def close(self) -> None:
        """Signal end of stream to the reader."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_EOF)

    def detach(self) -> None:
        self._detached = True

    async def frames(self) -> AsyncIterator[str]:
        while True:
            item = await self._queue.get()
            if item is _EOF:
                return
            yield str(item)
