from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.models.base import Base


class LiveParticipant(Base):
    __tablename__ = "live_participants"
    __table_args__ = (
        CheckConstraint("score >= 0", name="ck_live_participants_score_non_negative"),
        CheckConstraint("streak >= 0", name="ck_live_participants_streak_non_negative"),
        CheckConstraint(
            "team IS NULL OR team IN ('red','blue')",
            name="ck_live_participants_team",
        ),
        UniqueConstraint("room_id", "player_id", name="uq_live_participants_room_player"),
        Index("idx_live_participants_room_joined", "room_id", "joined_at"),
    )

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    room_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("live_rooms.id", ondelete="CASCADE"),
        nullable=False,
    )
    player_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    nickname: Mapped[str] = mapped_column(String(32), nullable=False)
    avatar: Mapped[str | None] = mapped_column(String(64), nullable=True)
    team: Mapped[str | None] = mapped_column(String(8), nullable=True)
    score: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    streak: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    last_active: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
