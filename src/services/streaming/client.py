"""Client-side helpers for consuming and resuming generation streams.

``SseFrameDecoder`` turns arbitrary network chunks into frames. It never
guesses: a trailing partial event is reported as incomplete and kept for the
next chunk, and an event whose JSON cannot be decoded is reported as
unparseable instead of being dropped silently.

``ResumptionPoller`` is what a returning client runs: check the stream
status, wait (bounded) while it is still active, then replay it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from uuid import UUID

import httpx
from pydantic import ValidationError

from schemas.generation import StreamFrame, StreamStatusResponse


logger = logging.getLogger(__name__)

EVENT_SEPARATOR = "\n\n"


@dataclass(slots=True)
class DecodeResult:
    """Outcome of feeding one chunk.

    Attributes:
        frames: Complete, valid frames in arrival order.
        unparseable: Raw payloads of complete events that were not valid
            frames; a later frame normally supersedes them.
        incomplete: True when bytes of an unfinished event are buffered.
    """

    frames: list[StreamFrame] = field(default_factory=list)
    unparseable: list[str] = field(default_factory=list)
    incomplete: bool = False


class SseFrameDecoder:
    """Incremental decoder for ``data: <json>\\n\\n`` streams."""

    def __init__(self) -> None:
        self._buffer = ""

    @property
    def pending(self) -> str:
        return self._buffer

    def feed(self, chunk: str) -> DecodeResult:
        self._buffer += chunk.replace("\r\n", "\n")
        result = DecodeResult()
        while EVENT_SEPARATOR in self._buffer:
            event, self._buffer = self._buffer.split(EVENT_SEPARATOR, 1)
            payload = self._event_data(event)
            if payload is None:
                continue
            try:
                result.frames.append(StreamFrame.model_validate_json(payload))
            except ValidationError:
                logger.debug("Unparseable SSE payload (%d chars)", len(payload))
                result.unparseable.append(payload)
        result.incomplete = bool(self._buffer.strip())
        return result

    @staticmethod
    def _event_data(event: str) -> str | None:
        lines = [
            line[5:].lstrip(" ") for line in event.split("\n") if line.startswith("data:")
        ]
        if not lines:
            return None
        return "\n".join(lines)


class ResumptionPoller:
    """Resume a generation stream over HTTP.

    Args:
        client: An ``httpx.AsyncClient`` whose base URL points at the API and
            which carries the caller's credentials.
        poll_interval: Seconds between status checks while the stream is active.
        max_wait: Ceiling on the total time spent waiting for an active stream.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        poll_interval: float = 1.0,
        max_wait: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._poll_interval = poll_interval
        self._max_wait = max_wait
        self._clock = clock
        self._sleep = sleep

    @staticmethod
    def _stream_path(interview_id: UUID | str, module_key: str) -> str:
        return f"/api/v1/interviews/{interview_id}/streams/{module_key}"

    async def status(
        self, interview_id: UUID | str, module_key: str
    ) -> StreamStatusResponse:
        response = await self._client.get(
            f"{self._stream_path(interview_id, module_key)}/status"
        )
        response.raise_for_status()
        body = response.json()
        return StreamStatusResponse.model_validate(body.get("data", body))

    async def wait_until_settled(
        self, interview_id: UUID | str, module_key: str
    ) -> StreamStatusResponse:
        """Poll the status until it leaves ``active`` or the ceiling is reached."""
        deadline = self._clock() + self._max_wait
        current = await self.status(interview_id, module_key)
        while current.status == "active" and self._clock() < deadline:
            await self._sleep(self._poll_interval)
            current = await self.status(interview_id, module_key)
        if current.status == "active":
            logger.warning(
                "Stream %s/%s still active after %.0fs", interview_id, module_key, self._max_wait
            )
        return current

    async def replay(
        self, interview_id: UUID | str, module_key: str
    ) -> AsyncIterator[StreamFrame]:
        """Yield the frames of the resume endpoint; nothing when it answers 204."""
        decoder = SseFrameDecoder()
        async with self._client.stream(
            "GET", self._stream_path(interview_id, module_key)
        ) as response:
            if response.status_code == httpx.codes.NO_CONTENT:
                return
            response.raise_for_status()
            async for chunk in response.aiter_text():
                for frame in decoder.feed(chunk).frames:
                    yield frame
        if decoder.pending.strip():
            logger.warning("Resume stream ended mid-frame for %s/%s", interview_id, module_key)

    async def resume(
        self, interview_id: UUID | str, module_key: str
    ) -> list[StreamFrame]:
        """Wait for an active stream to settle, then collect its replay."""
        status = await self.status(interview_id, module_key)
        if status.status == "none":
            return []
        if status.status == "active":
            await self.wait_until_settled(interview_id, module_key)
        return [frame async for frame in self.replay(interview_id, module_key)]
