"""Provenance records for language-model requests."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import UUID, Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class AIRequestLog(Base):
    """One model invocation: who asked, which model, how long, how many tokens."""

    __tablename__ = "ai_request_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    interview_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("interviews.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    action: Mapped[str] = mapped_column(
        String(64), nullable=False, comment="e.g. GENERATE_MODULE, ADD_MORE_CONTENT"
    )
    module_key: Mapped[str | None] = mapped_column(String(128), nullable=True)
    model_id: Mapped[str] = mapped_column(String(128), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, comment="success | error"
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    byok: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, comment="Caller supplied the API key"
    )
    input_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    output_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    latency_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    time_to_first_token_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    items_generated: Mapped[int | None] = mapped_column(Integer, nullable=True)
    items_added: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    def __repr__(self) -> str:
        return (
            f"<AIRequestLog(id={self.id}, action={self.action}, status={self.status})>"
        )
