from __future__ import annotations

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.live_participants import LiveParticipant


class LiveParticipantsRepo:
    @staticmethod
    async def create(session: AsyncSession, *, participant: LiveParticipant) -> LiveParticipant:
        session.add(participant)
        await session.flush()
        await session.refresh(participant)
        return participant

    @staticmethod
    async def get_by_id(session: AsyncSession, participant_id: UUID) -> LiveParticipant | None:
        return await session.get(LiveParticipant, participant_id, populate_existing=True)

    @staticmethod
    async def get_by_room_player(
        session: AsyncSession,
        *,
        room_id: UUID,
        player_id: str,
    ) -> LiveParticipant | None:
        stmt = select(LiveParticipant).where(
            LiveParticipant.room_id == room_id,
            LiveParticipant.player_id == player_id,
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def list_for_room(session: AsyncSession, room_id: UUID) -> list[LiveParticipant]:
        stmt = (
            select(LiveParticipant)
            .where(LiveParticipant.room_id == room_id)
            .order_by(LiveParticipant.joined_at.asc(), LiveParticipant.id.asc())
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def set_score(
        session: AsyncSession,
        participant_id: UUID,
        *,
        score: int,
        streak: int,
    ) -> LiveParticipant | None:
        stmt = (
            update(LiveParticipant)
            .where(LiveParticipant.id == participant_id)
            .values(score=score, streak=streak)
            .returning(LiveParticipant)
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()
