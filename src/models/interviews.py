"""Interview model holding generated preparation content."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import JSON, UUID, DateTime, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


if TYPE_CHECKING:  # pragma: no cover - only for type checking
    from .users import User


class Interview(Base):
    """An interview a user is preparing for.

    Generated modules live in JSON columns; list modules are arrays of items
    with string ids.
    """

    __tablename__ = "interviews"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    job_details: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, comment="Job title, company, description, language"
    )
    resume_context: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Candidate background used to tailor prompts"
    )
    custom_instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    excluded_modules: Mapped[list[str]] = mapped_column(
        JSON, nullable=False, default=list
    )
    opening_brief: Mapped[dict[str, Any] | None] = mapped_column(
        JSON, nullable=True, comment="Opening brief including its version counter"
    )
    revision_topics: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )
    mcqs: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )
    rapid_fire: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    user: Mapped[User] = relationship("User", back_populates="interviews")

    def __repr__(self) -> str:
        return f"<Interview(id={self.id}, user_id={self.user_id})>"
