"""Request, response and wire-frame schemas for streaming generation."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


MAX_SSE_FRAME_BYTES: int = 1_048_576

StreamStatusValue = Literal["none", "active", "completed", "error"]

SSE_HEADERS: dict[str, str] = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class StreamFrame(BaseModel):
    """One SSE frame: ``data: <json>\\n\\n``.

    `module` names the generated module; topic regeneration frames carry
    `topic_id` (and `style` on completion) instead.
    """

    type: Literal["content", "done", "error"]
    module: str | None = None
    topic_id: str | None = None
    style: str | None = None
    data: Any | None = None
    error: str | None = None

    model_config = ConfigDict(extra="forbid")

    def to_sse(self) -> str:
        """Serialize the frame to SSE format with size validation."""
        payload = self.model_dump_json(exclude_none=True)
        if len(payload.encode("utf-8")) > MAX_SSE_FRAME_BYTES:
            raise ValueError("SSE payload exceeded MAX_SSE_FRAME_BYTES")
        return f"data: {payload}\n\n"


# -----------------------------------------------------------------------------
# Requests
# -----------------------------------------------------------------------------


class GenerateModuleRequest(BaseModel):
    """Body for generating (or adding more of) one module.

    `module` is validated by the orchestrator so an unknown name is a 400
    rather than a schema error.
    """

    module: str = Field(..., min_length=1, max_length=64)
    count: int | None = Field(default=None, ge=1, le=50)
    instructions: str | None = Field(default=None, max_length=2000)

    model_config = ConfigDict(extra="forbid")


class RegenerateTopicRequest(BaseModel):
    style: str = Field(..., min_length=1, max_length=32)
    instructions: str | None = Field(default=None, max_length=2000)

    model_config = ConfigDict(extra="forbid")


class GenerateAllRequest(BaseModel):
    modules: list[str] | None = Field(
        default=None,
        description="Modules to generate; defaults to every module not excluded",
    )
    instructions: str | None = Field(default=None, max_length=2000)

    model_config = ConfigDict(extra="forbid")


# -----------------------------------------------------------------------------
# Responses
# -----------------------------------------------------------------------------


class StreamStatusResponse(BaseModel):
    status: StreamStatusValue
    stream_id: str | None = None
    created_at: datetime | None = None


class ScheduledModule(BaseModel):
    module: str
    module_key: str


class GenerateAllResponse(BaseModel):
    interview_id: UUID
    concurrency_limit: int
    scheduled: list[ScheduledModule]


class ConcurrencySettings(BaseModel):
    limit: int = Field(..., ge=1)
