from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import UUID, CheckConstraint, DateTime, Float, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship


if TYPE_CHECKING:  # pragma: no cover - only for type checking
    from .interviews import Interview

from .base import Base


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("iterations_used >= 0", name="ck_users_iterations_used"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, index=True, default=uuid.uuid4
    )
    email: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False, index=True
    )
    name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    plan: Mapped[str] = mapped_column(String(20), nullable=False, default="free")
    # Fractional so that cheap operations (e.g. topic rewrites) can cost < 1
    iterations_used: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    iterations_limit: Mapped[float] = mapped_column(
        Float, nullable=False, default=20.0
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    # Relationships
    interviews: Mapped[list[Interview]] = relationship(
        "Interview", back_populates="user"
    )
