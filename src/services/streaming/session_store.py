"""Stream session metadata and replay buffers.

Each generation scope (interview + module key) has at most one session. The
session records the stream id, status and an epoch number; the replay buffer
holds every serialized SSE frame sent to the live client, in order, so that a
returning client can be shown exactly what it missed.

Two backends are provided:

* ``RedisStreamSessionStore`` - Upstash Redis over REST, survives restarts and
  is shared between workers. Used in production.
* ``InMemoryStreamSessionStore`` - process-local, same TTL semantics. Used in
  development and tests.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Literal, Protocol

from pydantic import BaseModel, Field

from core.config import Settings
from schemas.generation import StreamStatusResponse


if TYPE_CHECKING:
    from upstash_redis.asyncio import Redis

logger = logging.getLogger(__name__)

SESSION_KEY_PREFIX = "stream"
CONTENT_KEY_PREFIX = "stream-content"
EPOCH_KEY_PREFIX = "stream-epoch"
EPOCH_TTL_SECONDS = 86_400

SessionStatus = Literal["active", "completed", "error"]
TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "error"})


@dataclass(frozen=True, slots=True)
class StreamScope:
    """Identifies one resumable stream: the owning entity and a module key."""

    entity_id: str
    module_key: str

    def key(self, prefix: str) -> str:
        return f"{prefix}:{self.entity_id}:{self.module_key}"

    def __str__(self) -> str:
        return f"{self.entity_id}:{self.module_key}"


class StreamSession(BaseModel):
    stream_id: str
    # User who started the stream; None only for records written before it existed
    owner_id: str | None = None
    status: SessionStatus = "active"
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime | None = None
    epoch: int = 0
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


def status_of(session: StreamSession | None) -> StreamStatusResponse:
    if session is None:
        return StreamStatusResponse(status="none")
    return StreamStatusResponse(
        status=session.status,
        stream_id=session.stream_id,
        created_at=session.created_at,
    )


class StreamSessionStore(Protocol):
    """Persistence for stream sessions and their replay buffers."""

    async def save(self, scope: StreamScope, session: StreamSession) -> None: ...

    async def get_session(self, scope: StreamScope) -> StreamSession | None: ...

    async def get_status(self, scope: StreamScope) -> StreamStatusResponse: ...

    async def clear_buffer(self, scope: StreamScope) -> None: ...

    async def append_to_buffer(self, scope: StreamScope, frame: str) -> None: ...

    async def read_buffer(self, scope: StreamScope, start: int = 0) -> list[str]: ...

    async def set_status(
        self,
        scope: StreamScope,
        status: SessionStatus,
        *,
        error: str | None = None,
    ) -> None: ...

    async def next_epoch(self, scope: StreamScope) -> int: ...

    async def current_epoch(self, scope: StreamScope) -> int: ...

    async def clear(self, scope: StreamScope) -> None: ...


class InMemoryStreamSessionStore:
    """Process-local store; entries expire lazily on access."""

    def __init__(
        self,
        *,
        ttl_seconds: int = 300,
        completed_ttl_seconds: int = 120,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._completed_ttl = completed_ttl_seconds
        self._clock = clock
        self._sessions: dict[StreamScope, tuple[StreamSession, float]] = {}
        self._buffers: dict[StreamScope, tuple[list[str], float]] = {}
        self._epochs: dict[StreamScope, int] = {}

    def _live_session(self, scope: StreamScope) -> StreamSession | None:
        entry = self._sessions.get(scope)
        if entry is None:
            return None
        session, expires_at = entry
        if self._clock() >= expires_at:
            del self._sessions[scope]
            return None
        return session

    def _live_buffer(self, scope: StreamScope) -> list[str] | None:
        entry = self._buffers.get(scope)
        if entry is None:
            return None
        frames, expires_at = entry
        if self._clock() >= expires_at:
            del self._buffers[scope]
            return None
        return frames

    async def save(self, scope: StreamScope, session: StreamSession) -> None:
        ttl = self._completed_ttl if session.is_terminal else self._ttl
        self._sessions[scope] = (session.model_copy(), self._clock() + ttl)

    async def get_session(self, scope: StreamScope) -> StreamSession | None:
        session = self._live_session(scope)
        return session.model_copy() if session is not None else None

    async def get_status(self, scope: StreamScope) -> StreamStatusResponse:
        return status_of(self._live_session(scope))

    async def clear_buffer(self, scope: StreamScope) -> None:
        self._buffers.pop(scope, None)

    async def append_to_buffer(self, scope: StreamScope, frame: str) -> None:
        expires_at = self._clock() + self._ttl
        frames = self._live_buffer(scope)
        if frames is None:
            frames = []
        frames.append(frame)
        self._buffers[scope] = (frames, expires_at)
        session = self._live_session(scope)
        if session is not None and not session.is_terminal:
            self._sessions[scope] = (session, expires_at)

    async def read_buffer(self, scope: StreamScope, start: int = 0) -> list[str]:
        frames = self._live_buffer(scope)
        if not frames:
            return []
        return list(frames[start:])

    async def set_status(
        self,
        scope: StreamScope,
        status: SessionStatus,
        *,
        error: str | None = None,
    ) -> None:
        session = self._live_session(scope)
        if session is None:
            logger.warning("set_status(%s) on missing session %s", status, scope)
            return
        updated = session.model_copy(
            update={"status": status, "error": error, "updated_at": datetime.now(UTC)}
        )
        await self.save(scope, updated)
        if updated.is_terminal:
            frames = self._live_buffer(scope)
            if frames is not None:
                self._buffers[scope] = (frames, self._clock() + self._completed_ttl)

    async def next_epoch(self, scope: StreamScope) -> int:
        self._epochs[scope] = self._epochs.get(scope, 0) + 1
        return self._epochs[scope]

    async def current_epoch(self, scope: StreamScope) -> int:
        return self._epochs.get(scope, 0)

    async def clear(self, scope: StreamScope) -> None:
        self._sessions.pop(scope, None)
        self._buffers.pop(scope, None)


class RedisStreamSessionStore:
    """Upstash Redis backed store.

    Keys per scope: ``stream:<entity>:<module>`` holds the JSON session,
    ``stream-content:<entity>:<module>`` is a list of SSE frames and
    ``stream-epoch:<entity>:<module>`` is an INCR counter.
    """

    def __init__(
        self,
        redis: Redis,
        *,
        ttl_seconds: int = 300,
        completed_ttl_seconds: int = 120,
    ) -> None:
        self._redis = redis
        self._ttl = ttl_seconds
        self._completed_ttl = completed_ttl_seconds

    async def save(self, scope: StreamScope, session: StreamSession) -> None:
        ttl = self._completed_ttl if session.is_terminal else self._ttl
        await self._redis.set(
            scope.key(SESSION_KEY_PREFIX), session.model_dump_json(), ex=ttl
        )

    async def get_session(self, scope: StreamScope) -> StreamSession | None:
        raw = await self._redis.get(scope.key(SESSION_KEY_PREFIX))
        if raw is None:
            return None
        if isinstance(raw, dict):
            return StreamSession.model_validate(raw)
        return StreamSession.model_validate_json(raw)

    async def get_status(self, scope: StreamScope) -> StreamStatusResponse:
        return status_of(await self.get_session(scope))

    async def clear_buffer(self, scope: StreamScope) -> None:
        await self._redis.delete(scope.key(CONTENT_KEY_PREFIX))

    async def append_to_buffer(self, scope: StreamScope, frame: str) -> None:
        content_key = scope.key(CONTENT_KEY_PREFIX)
        await self._redis.rpush(content_key, frame)
        await self._redis.expire(content_key, self._ttl)
        await self._redis.expire(scope.key(SESSION_KEY_PREFIX), self._ttl)

    async def read_buffer(self, scope: StreamScope, start: int = 0) -> list[str]:
        frames = await self._redis.lrange(scope.key(CONTENT_KEY_PREFIX), start, -1)
        return [str(frame) for frame in frames or []]

    async def set_status(
        self,
        scope: StreamScope,
        status: SessionStatus,
        *,
        error: str | None = None,
    ) -> None:
        session = await self.get_session(scope)
        if session is None:
            logger.warning("set_status(%s) on missing session %s", status, scope)
            return
        updated = session.model_copy(
            update={"status": status, "error": error, "updated_at": datetime.now(UTC)}
        )
        await self.save(scope, updated)
        if updated.is_terminal:
            await self._redis.expire(
                scope.key(CONTENT_KEY_PREFIX), self._completed_ttl
            )

    async def next_epoch(self, scope: StreamScope) -> int:
        epoch_key = scope.key(EPOCH_KEY_PREFIX)
        epoch = await self._redis.incr(epoch_key)
        await self._redis.expire(epoch_key, EPOCH_TTL_SECONDS)
        return int(epoch)

    async def current_epoch(self, scope: StreamScope) -> int:
        raw = await self._redis.get(scope.key(EPOCH_KEY_PREFIX))
        return int(raw) if raw is not None else 0

    async def clear(self, scope: StreamScope) -> None:
        await self._redis.delete(
            scope.key(SESSION_KEY_PREFIX), scope.key(CONTENT_KEY_PREFIX)
        )


def build_stream_store(settings: Settings) -> StreamSessionStore:
    """Create the store selected by ``STREAM_STORE_BACKEND``.

    Falls back to the in-memory store when Redis is selected but Upstash is
    not configured.
    """
    ttl = settings.STREAM_TTL_SECONDS
    completed_ttl = settings.STREAM_COMPLETED_TTL_SECONDS

    if settings.STREAM_STORE_BACKEND == "redis":
        if settings.UPSTASH_REDIS_REST_URL and settings.UPSTASH_REDIS_REST_TOKEN:
            from upstash_redis.asyncio import Redis

            redis = Redis(
                url=settings.UPSTASH_REDIS_REST_URL,
                token=settings.UPSTASH_REDIS_REST_TOKEN,
            )
            logger.info("Using Upstash Redis stream session store")
            return RedisStreamSessionStore(
                redis, ttl_seconds=ttl, completed_ttl_seconds=completed_ttl
            )
        logger.warning(
            "Upstash Redis not configured. Stream sessions are process-local and "
            "will not survive a restart. Set UPSTASH_REDIS_REST_URL and "
            "UPSTASH_REDIS_REST_TOKEN to enable durable resumption."
        )

    return InMemoryStreamSessionStore(
        ttl_seconds=ttl, completed_ttl_seconds=completed_ttl
    )
