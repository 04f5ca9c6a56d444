from __future__ import annotations

from uuid import UUID

from sqlalchemy import exists, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.live_answers import LiveAnswer


class LiveAnswersRepo:
    @staticmethod
    async def create(session: AsyncSession, *, answer: LiveAnswer) -> LiveAnswer:
        session.add(answer)
        await session.flush()
        await session.refresh(answer)
        return answer

    @staticmethod
    async def exists_for_question(
        session: AsyncSession,
        *,
        room_id: UUID,
        participant_id: UUID,
        question_id: str,
    ) -> bool:
        stmt = select(
            exists().where(
                LiveAnswer.room_id == room_id,
                LiveAnswer.participant_id == participant_id,
                LiveAnswer.question_id == question_id,
            )
        )
        result = await session.execute(stmt)
        return bool(result.scalar())

    @staticmethod
    async def count_for_question(session: AsyncSession, *, room_id: UUID, question_id: str) -> int:
        stmt = select(func.count(LiveAnswer.id)).where(
            LiveAnswer.room_id == room_id,
            LiveAnswer.question_id == question_id,
        )
        result = await session.execute(stmt)
        return int(result.scalar_one())

    @staticmethod
    async def list_for_participant(
        session: AsyncSession,
        *,
        room_id: UUID,
        participant_id: UUID,
    ) -> list[LiveAnswer]:
        stmt = (
            select(LiveAnswer)
            .where(
                LiveAnswer.room_id == room_id,
                LiveAnswer.participant_id == participant_id,
            )
            .order_by(LiveAnswer.created_at.asc(), LiveAnswer.id.asc())
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())
