"""Persistence of generated interview content."""

from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models.interviews import Interview
from schemas.interviews import OpeningBrief


logger = logging.getLogger(__name__)

LIST_COLUMNS: frozenset[str] = frozenset({"revision_topics", "mcqs", "rapid_fire"})


class InterviewCRUD:
    """Repository for interviews and their module content.

    JSON columns are always reassigned (never mutated in place) so the ORM
    sees the change.
    """

    async def find(
        self, db: AsyncSession, interview_id: UUID, *, for_update: bool = False
    ) -> Interview | None:
        """Get an interview by ID, optionally locking the row."""
        statement = select(Interview).where(Interview.id == interview_id)
        if for_update:
            statement = statement.with_for_update()
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def append_to_module(
        self,
        db: AsyncSession,
        interview_id: UUID,
        column: str,
        items: list[dict[str, Any]],
    ) -> Interview | None:
        """Append ``items`` to a list module column and commit."""
        if column not in LIST_COLUMNS:
            raise ValueError(f"Not a list module column: {column}")
        try:
            interview = await self.find(db, interview_id, for_update=True)
            if interview is None:
                return None
            current = list(getattr(interview, column) or [])
            setattr(interview, column, [*current, *items])
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        await db.refresh(interview)
        return interview

    async def set_opening_brief(
        self, db: AsyncSession, interview_id: UUID, brief: OpeningBrief
    ) -> Interview | None:
        """Replace the opening brief and commit."""
        try:
            interview = await self.find(db, interview_id, for_update=True)
            if interview is None:
                return None
            interview.opening_brief = brief.model_dump(mode="json")
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        await db.refresh(interview)
        return interview

    async def update_topic(
        self,
        db: AsyncSession,
        interview_id: UUID,
        topic_id: str,
        changes: dict[str, Any],
    ) -> dict[str, Any] | None:
        """Merge ``changes`` into one revision topic and commit.

        Returns:
            The updated topic, or None when the interview or topic is missing.
        """
        try:
            interview = await self.find(db, interview_id, for_update=True)
            if interview is None:
                return None
            topics = [dict(topic) for topic in interview.revision_topics or []]
            updated: dict[str, Any] | None = None
            for topic in topics:
                if str(topic.get("id")) == topic_id:
                    topic.update(changes)
                    updated = topic
                    break
            if updated is None:
                await db.rollback()
                return None
            interview.revision_topics = topics
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return updated


interview_crud = InterviewCRUD()
