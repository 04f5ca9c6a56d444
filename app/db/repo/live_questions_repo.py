from __future__ import annotations

from collections.abc import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.live_questions import LiveQuestion


class LiveQuestionsRepo:
    @staticmethod
    async def create(session: AsyncSession, *, question: LiveQuestion) -> LiveQuestion:
        session.add(question)
        await session.flush()
        return question

    @staticmethod
    async def list_by_ids(session: AsyncSession, question_ids: Sequence[str]) -> list[LiveQuestion]:
        if not question_ids:
            return []
        stmt = select(LiveQuestion).where(LiveQuestion.id.in_(tuple(question_ids)))
        result = await session.execute(stmt)
        return list(result.scalars().all())
