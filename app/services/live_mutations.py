"""Server-timestamping room mutations.

The question start stamp must come from the server clock so every client
reconciles its countdown against the same instant. `SqlRoomMutations` stamps
with the database `now()`; `HttpRoomMutations` calls the internal API that
wraps it, for clients that do not hold a database connection.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.repo.live_rooms_repo import LiveRoomsRepo
from app.game.live.constants import EVENT_UPDATE, ROOM_STATUS_ACTIVE, ROOM_STATUS_FINISHED, TABLE_ROOMS
from app.game.live.errors import RoomFinishedError, RoomMutationError, RoomNotFoundError
from app.game.live.types import ChangeEvent, RoomSnapshot
from app.services.internal_auth import INTERNAL_TOKEN_HEADER
from app.services.live_store import ChangePublisher, parse_uuid, room_snapshot

logger = structlog.get_logger(__name__)


class SqlRoomMutations:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        publisher: ChangePublisher | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._publisher = publisher

    async def start_game(self, room_id: str) -> RoomSnapshot:
        return await self._move(room_id, next_index=0, action="start_game")

    async def advance_question(self, room_id: str, next_index: int) -> RoomSnapshot:
        if next_index < 0:
            raise ValueError("next_index must be >= 0")
        return await self._move(room_id, next_index=next_index, action="advance_question")

    async def finish_game(self, room_id: str) -> RoomSnapshot:
        room_uuid = parse_uuid(room_id)
        if room_uuid is None:
            raise RoomNotFoundError(room_id)
        try:
            async with self._session_factory.begin() as session:
                row = await LiveRoomsRepo.get_by_id_for_update(session, room_uuid)
                if row is None:
                    raise RoomNotFoundError(room_id)
                if row.status == ROOM_STATUS_FINISHED:
                    return room_snapshot(row)
                row = await LiveRoomsRepo.update_fields(
                    session,
                    room_uuid,
                    status=ROOM_STATUS_FINISHED,
                    question_started_at=None,
                )
                room = room_snapshot(row)
        except (SQLAlchemyError, OSError) as exc:
            raise RoomMutationError("finish_game") from exc
        await self._announce(room)
        logger.info("live_room_finished", room_id=room.id)
        return room

    async def _move(self, room_id: str, *, next_index: int, action: str) -> RoomSnapshot:
        room_uuid = parse_uuid(room_id)
        if room_uuid is None:
            raise RoomNotFoundError(room_id)
        try:
            async with self._session_factory.begin() as session:
                row = await LiveRoomsRepo.get_by_id_for_update(session, room_uuid)
                if row is None:
                    raise RoomNotFoundError(room_id)
                if row.status == ROOM_STATUS_FINISHED:
                    raise RoomFinishedError(room_id)
                if next_index >= len(row.question_ids or ()):
                    finishing = True
                    row = await LiveRoomsRepo.update_fields(
                        session,
                        room_uuid,
                        status=ROOM_STATUS_FINISHED,
                        question_started_at=None,
                    )
                else:
                    finishing = False
                    row = await LiveRoomsRepo.stamp_question(
                        session,
                        room_uuid,
                        question_index=next_index,
                        status=ROOM_STATUS_ACTIVE,
                    )
                room = room_snapshot(row)
        except (SQLAlchemyError, OSError) as exc:
            raise RoomMutationError(action) from exc
        await self._announce(room)
        logger.info(
            "live_room_question_stamped",
            action=action,
            room_id=room.id,
            question_index=room.current_question_index,
            finished=finishing,
            question_started_at=(str(room.question_started_at) if room.question_started_at else None),
        )
        return room

    async def _announce(self, room: RoomSnapshot) -> None:
        if self._publisher is None:
            return
        await self._publisher.publish(
            ChangeEvent(table=TABLE_ROOMS, event_type=EVENT_UPDATE, new=room.to_dict()),
            room_id=room.id,
        )


class HttpRoomMutations:
    """Calls the internal live-room endpoints; any transport failure is a RoomMutationError."""

    def __init__(
        self,
        *,
        base_url: str,
        token: str,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers={INTERNAL_TOKEN_HEADER: token},
            transport=transport,
        )

    async def __aenter__(self) -> HttpRoomMutations:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def start_game(self, room_id: str) -> RoomSnapshot:
        return await self._post(room_id, "start")

    async def advance_question(self, room_id: str, next_index: int) -> RoomSnapshot:
        return await self._post(room_id, "next", body={"next_index": next_index})

    async def finish_game(self, room_id: str) -> RoomSnapshot:
        return await self._post(room_id, "finish")

    async def _post(self, room_id: str, action: str, *, body: dict[str, Any] | None = None) -> RoomSnapshot:
        url = f"/internal/live-rooms/{room_id}/{action}"
        try:
            response = await self._client.post(url, json=body or {})
        except httpx.HTTPError as exc:
            logger.warning("live_mutation_request_failed", room_id=room_id, action=action, exc_info=exc)
            raise RoomMutationError(action) from exc

        if response.status_code == 404:
            raise RoomNotFoundError(room_id)
        if response.status_code == 409:
            raise RoomFinishedError(room_id)
        if response.is_error:
            logger.warning(
                "live_mutation_rejected",
                room_id=room_id,
                action=action,
                status_code=response.status_code,
            )
            raise RoomMutationError(f"{action}: HTTP {response.status_code}")

        try:
            return RoomSnapshot.from_mapping(response.json())
        except (KeyError, TypeError, ValueError) as exc:
            raise RoomMutationError(f"{action}: malformed room payload") from exc
