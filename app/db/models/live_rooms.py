from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, String, func, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.models.base import Base


class LiveRoom(Base):
    __tablename__ = "live_rooms"
    __table_args__ = (
        CheckConstraint(
            "status IN ('waiting','active','finished')",
            name="ck_live_rooms_status",
        ),
        CheckConstraint(
            "current_question_index >= 0",
            name="ck_live_rooms_question_index_non_negative",
        ),
        CheckConstraint(
            "status != 'finished' OR question_started_at IS NULL",
            name="ck_live_rooms_finished_has_no_question_start",
        ),
        Index("uq_live_rooms_code", "code", unique=True),
        Index("idx_live_rooms_status_created", "status", "created_at"),
    )

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    code: Mapped[str] = mapped_column(String(6), nullable=False)
    host_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, server_default=text("'waiting'"))
    current_question_index: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    question_ids: Mapped[list[str]] = mapped_column(JSONB, nullable=False)
    settings: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)
    question_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
