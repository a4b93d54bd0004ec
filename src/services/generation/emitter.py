"""Time-based throttling of partial generation results.

Model providers can emit dozens of partial objects per second; forwarding each
one would flood the client and the replay buffer. The emitter keeps only the
latest pending payload and writes it at most once per interval, and the
caller flushes unconditionally when the source ends so the final state is
never lost.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any


logger = logging.getLogger(__name__)

FrameSink = Callable[[Any], Awaitable[None]]

_NOTHING = object()


class ThrottledEmitter:
    """Coalesce a burst of payloads into at most one write per interval.

    Args:
        sink: Coroutine function receiving each payload that is flushed.
        interval_seconds: Minimum spacing between two time-triggered flushes.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        sink: FrameSink,
        interval_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if interval_seconds < 0:
            raise ValueError("interval_seconds must be non-negative")
        self._sink = sink
        self._interval = interval_seconds
        self._clock = clock
        self._pending: Any = _NOTHING
        self._last_flush: float | None = None
        self.emitted = 0
        self.flushed = 0

    @property
    def has_pending(self) -> bool:
        return self._pending is not _NOTHING

    async def emit(self, payload: Any) -> None:
        """Record ``payload`` as pending and flush if the interval has elapsed."""
        self.emitted += 1
        self._pending = payload
        now = self._clock()
        if self._last_flush is None or now - self._last_flush >= self._interval:
            await self._write(now)

    async def flush(self) -> None:
        """Write the pending payload, if any, regardless of elapsed time."""
        if self._pending is _NOTHING:
            return
        await self._write(self._clock())

    async def _write(self, now: float) -> None:
        payload = self._pending
        self._pending = _NOTHING
        self._last_flush = now
        self.flushed += 1
        await self._sink(payload)
