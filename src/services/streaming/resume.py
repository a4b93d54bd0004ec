"""Replay and live-follow of a stream for a returning client."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field

from schemas.generation import StreamFrame
from services.streaming.session_store import (
    StreamScope,
    StreamSession,
    StreamSessionStore,
)


logger = logging.getLogger(__name__)

STREAM_FAILED_MESSAGE = "Stream failed"

ADD_MORE_PREFIX = "addMore_"
TOPIC_PREFIX = "topic_"


def frame_identity(module_key: str) -> dict[str, str]:
    """Fields naming the module (or topic) on frames of ``module_key``."""
    if module_key.startswith(TOPIC_PREFIX):
        return {"topic_id": module_key[len(TOPIC_PREFIX) :]}
    if module_key.startswith(ADD_MORE_PREFIX):
        return {"module": module_key[len(ADD_MORE_PREFIX) :]}
    return {"module": module_key}


def done_frame(module_key: str) -> str:
    return StreamFrame(type="done", **frame_identity(module_key)).to_sse()


def error_frame(module_key: str, message: str | None = None) -> str:
    return StreamFrame(
        type="error", error=message or STREAM_FAILED_MESSAGE, **frame_identity(module_key)
    ).to_sse()


@dataclass(slots=True)
class ResumePlan:
    """What the store knew when the client came back."""

    scope: StreamScope
    session: StreamSession | None
    buffered: list[str] = field(default_factory=list)

    @property
    def stream_id(self) -> str | None:
        return self.session.stream_id if self.session else None


async def plan_resume(store: StreamSessionStore, scope: StreamScope) -> ResumePlan | None:
    """Snapshot session and buffer; None means there is nothing to resume."""
    session = await store.get_session(scope)
    buffered = await store.read_buffer(scope)
    if session is None and not buffered:
        return None
    return ResumePlan(scope=scope, session=session, buffered=buffered)


async def resume_frames(
    store: StreamSessionStore,
    plan: ResumePlan,
    *,
    poll_interval: float,
    max_wait: float,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> AsyncIterator[str]:
    """Yield the frames a returning client should see.

    * no session but a buffer: replay, then ``done``
    * ``completed``: replay, then ``done``
    * ``error``: a single ``error`` frame
    * ``active``: replay, then follow the buffer until the session resolves
      or ``max_wait`` elapses
    """
    module_key = plan.scope.module_key
    session = plan.session

    if session is not None and session.status == "error":
        yield error_frame(module_key, session.error)
        return

    for frame in plan.buffered:
        yield frame

    if session is None or session.status == "completed":
        yield done_frame(module_key)
        return

    sent = len(plan.buffered)
    deadline = clock() + max_wait
    while clock() < deadline:
        await sleep(poll_interval)
        current = await store.get_session(plan.scope)

        if current is not None and current.stream_id != session.stream_id:
            logger.info("Stream %s replaced while resuming %s", session.stream_id, plan.scope)
            return

        for frame in await store.read_buffer(plan.scope, start=sent):
            sent += 1
            yield frame

        if current is None:
            # Expired while we were following it
            return
        if current.status == "completed":
            yield done_frame(module_key)
            return
        if current.status == "error":
            yield error_frame(module_key, current.error)
            return

    logger.warning("Gave up following stream %s after %.0fs", session.stream_id, max_wait)
