from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import exists, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.live_rooms import LiveRoom


class LiveRoomsRepo:
    @staticmethod
    async def create(session: AsyncSession, *, room: LiveRoom) -> LiveRoom:
        session.add(room)
        await session.flush()
        await session.refresh(room)
        return room

    @staticmethod
    async def get_by_id(session: AsyncSession, room_id: UUID) -> LiveRoom | None:
        return await session.get(LiveRoom, room_id, populate_existing=True)

    @staticmethod
    async def get_by_id_for_update(session: AsyncSession, room_id: UUID) -> LiveRoom | None:
        stmt = select(LiveRoom).where(LiveRoom.id == room_id).with_for_update()
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_code(session: AsyncSession, code: str) -> LiveRoom | None:
        stmt = select(LiveRoom).where(LiveRoom.code == code)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def code_exists(session: AsyncSession, code: str) -> bool:
        result = await session.execute(select(exists().where(LiveRoom.code == code)))
        return bool(result.scalar())

    @staticmethod
    async def update_fields(session: AsyncSession, room_id: UUID, **fields: Any) -> LiveRoom | None:
        stmt = (
            update(LiveRoom)
            .where(LiveRoom.id == room_id)
            .values(**fields)
            .returning(LiveRoom)
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def stamp_question(
        session: AsyncSession,
        room_id: UUID,
        *,
        question_index: int,
        status: str,
    ) -> LiveRoom | None:
        """Moves the room to a question, stamping its start with the database clock."""
        stmt = (
            update(LiveRoom)
            .where(LiveRoom.id == room_id)
            .values(
                status=status,
                current_question_index=question_index,
                question_started_at=func.now(),
            )
            .returning(LiveRoom)
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()
