from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, String, func
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.models.base import Base


class LiveAnswer(Base):
    __tablename__ = "live_answers"
    __table_args__ = (
        CheckConstraint("response_time_ms >= 0", name="ck_live_answers_response_time_non_negative"),
        CheckConstraint("points_earned >= 0", name="ck_live_answers_points_non_negative"),
        CheckConstraint(
            "selected_option_id IS NOT NULL OR is_correct = false",
            name="ck_live_answers_timeout_is_incorrect",
        ),
        # Lookup only: one answer per participant and question is enforced by the submitting client.
        Index("idx_live_answers_room_question", "room_id", "question_id"),
        Index("idx_live_answers_participant_created", "room_id", "participant_id", "created_at"),
    )

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    room_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("live_rooms.id", ondelete="CASCADE"),
        nullable=False,
    )
    participant_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("live_participants.id", ondelete="CASCADE"),
        nullable=False,
    )
    question_id: Mapped[str] = mapped_column(String(64), ForeignKey("live_questions.id"), nullable=False)
    selected_option_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_correct: Mapped[bool] = mapped_column(Boolean, nullable=False)
    response_time_ms: Mapped[int] = mapped_column(Integer, nullable=False)
    points_earned: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
