"""Generation requests, prepared jobs and their completion callbacks."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Literal
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from crud.interviews import InterviewCRUD
from schemas.generation import StreamFrame
from schemas.interviews import OpeningBrief
from services.ai.interfaces import GenerationContext
from services.deduplication_service import collect_existing_ids, filter_new_items
from services.generation.modules import ModuleSpec
from services.streaming.session_store import StreamScope


logger = logging.getLogger(__name__)

Operation = Literal["generate", "add_more", "regenerate_topic"]

# Provenance action names
ACTIONS: dict[str, str] = {
    "generate": "GENERATE_MODULE",
    "add_more": "ADD_MORE_CONTENT",
    "regenerate_topic": "REGENERATE_TOPIC",
}


@dataclass(frozen=True, slots=True)
class GenerationRequest:
    """A validated-on-prepare request to stream one module."""

    operation: Operation
    module: str
    count: int | None = None
    instructions: str | None = None
    topic_id: str | None = None
    style: str | None = None


@dataclass(slots=True)
class CommitSummary:
    items_generated: int = 0
    items_added: int = 0

    @property
    def items_dropped(self) -> int:
        return self.items_generated - self.items_added


CompletionCallback = Callable[[AsyncSession, Any], Awaitable[CommitSummary]]


@dataclass(slots=True)
class GenerationJob:
    """Everything a server-side task needs to run one generation."""

    scope: StreamScope
    user_id: UUID
    interview_id: UUID
    spec: ModuleSpec
    count: int | None
    context: GenerationContext
    action: str
    on_complete: CompletionCallback
    existing_ids: frozenset[str] = field(default_factory=frozenset)
    api_key: str | None = None
    topic_id: str | None = None
    style: str | None = None

    @property
    def byok(self) -> bool:
        return self.api_key is not None

    def _frame(self, **fields: Any) -> StreamFrame:
        if self.topic_id is not None:
            return StreamFrame(topic_id=self.topic_id, **fields)
        return StreamFrame(module=self.spec.name, **fields)

    def content_frame(self, data: Any) -> StreamFrame:
        return self._frame(type="content", data=data)

    def done_frame(self) -> StreamFrame:
        if self.topic_id is not None:
            return StreamFrame(type="done", topic_id=self.topic_id, style=self.style)
        return self._frame(type="done")

    def error_frame(self, message: str) -> StreamFrame:
        return self._frame(type="error", error=message)


# --------------------------------------------------------------------------- #
# Completion callbacks
# --------------------------------------------------------------------------- #


def list_module_committer(
    interviews: InterviewCRUD,
    interview_id: UUID,
    spec: ModuleSpec,
    existing_ids: frozenset[str],
) -> CompletionCallback:
    """Append the deduplicated final batch of a list module."""

    async def commit(db: AsyncSession, output: Any) -> CommitSummary:
        candidates = spec.items(output)
        known = set(existing_ids)
        # Items committed by another job since this one was prepared
        current = await interviews.find(db, interview_id)
        if current is not None:
            known |= collect_existing_ids(getattr(current, spec.column))
        fresh = filter_new_items(candidates, known)
        if fresh:
            updated = await interviews.append_to_module(
                db,
                interview_id,
                spec.column,
                [item.model_dump(mode="json") for item in fresh],
            )
            if updated is None:
                raise LookupError(f"Interview {interview_id} disappeared")
        summary = CommitSummary(items_generated=len(candidates), items_added=len(fresh))
        logger.info(
            "Committed %d/%d %s item(s) for interview %s (%d duplicate(s) dropped)",
            summary.items_added,
            summary.items_generated,
            spec.name,
            interview_id,
            summary.items_dropped,
        )
        return summary

    return commit


def opening_brief_committer(
    interviews: InterviewCRUD, interview_id: UUID
) -> CompletionCallback:
    """Replace the opening brief, bumping its version."""

    async def commit(db: AsyncSession, output: Any) -> CommitSummary:
        current = await interviews.find(db, interview_id)
        if current is None:
            raise LookupError(f"Interview {interview_id} disappeared")
        previous = (current.opening_brief or {}).get("version", 0)
        brief = OpeningBrief(**output.model_dump(), version=int(previous) + 1)
        await interviews.set_opening_brief(db, interview_id, brief)
        return CommitSummary(items_generated=1, items_added=1)

    return commit


def topic_regeneration_committer(
    interviews: InterviewCRUD,
    interview_id: UUID,
    topic_id: str,
    style: str,
) -> CompletionCallback:
    """Rewrite a topic in ``style``, caching the explanation per style."""

    async def commit(db: AsyncSession, output: Any) -> CommitSummary:
        current = await interviews.find(db, interview_id)
        if current is None:
            raise LookupError(f"Interview {interview_id} disappeared")
        topic = next(
            (t for t in current.revision_topics or [] if str(t.get("id")) == topic_id),
            None,
        )
        if topic is None:
            raise LookupError(f"Topic {topic_id} disappeared")

        cache = dict(topic.get("style_cache") or {})
        if topic.get("content"):
            cache[str(topic.get("style") or "professional")] = topic["content"]
        cache[style] = output.content
        await interviews.update_topic(
            db,
            interview_id,
            topic_id,
            {"content": output.content, "style": style, "style_cache": cache},
        )
        return CommitSummary(items_generated=1, items_added=1)

    return commit
