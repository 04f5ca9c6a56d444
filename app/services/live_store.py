from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Any, Protocol
from uuid import UUID

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.models.live_answers import LiveAnswer
from app.db.models.live_participants import LiveParticipant
from app.db.models.live_questions import LiveQuestion
from app.db.models.live_rooms import LiveRoom
from app.db.repo.live_answers_repo import LiveAnswersRepo
from app.db.repo.live_participants_repo import LiveParticipantsRepo
from app.db.repo.live_questions_repo import LiveQuestionsRepo
from app.db.repo.live_rooms_repo import LiveRoomsRepo
from app.game.live.constants import (
    EVENT_INSERT,
    EVENT_UPDATE,
    ROOM_STATUS_WAITING,
    TABLE_ANSWERS,
    TABLE_PARTICIPANTS,
    TABLE_ROOMS,
)
from app.game.live.errors import RoomCodeTakenError, StoreUnavailableError
from app.game.live.types import (
    AnswerRecord,
    ChangeEvent,
    ParticipantSnapshot,
    Question,
    QuestionOption,
    RoomSettings,
    RoomSnapshot,
)

logger = structlog.get_logger(__name__)

ROOM_UPDATABLE_FIELDS = frozenset({"status", "current_question_index", "question_started_at"})


class ChangePublisher(Protocol):
    async def publish(self, event: ChangeEvent, *, room_id: str) -> None: ...


def parse_uuid(value: str | UUID) -> UUID | None:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


def room_snapshot(row: LiveRoom) -> RoomSnapshot:
    return RoomSnapshot(
        id=str(row.id),
        code=row.code,
        status=row.status,
        current_question_index=row.current_question_index,
        question_ids=tuple(str(qid) for qid in row.question_ids or ()),
        settings=RoomSettings.from_mapping(row.settings),
        question_started_at=row.question_started_at,
        host_id=row.host_id,
        created_at=row.created_at,
    )


def participant_snapshot(row: LiveParticipant) -> ParticipantSnapshot:
    return ParticipantSnapshot(
        id=str(row.id),
        room_id=str(row.room_id),
        nickname=row.nickname,
        player_id=row.player_id,
        score=row.score,
        streak=row.streak,
        team=row.team,
        avatar=row.avatar,
        last_active=row.last_active,
    )


def answer_record(row: LiveAnswer) -> AnswerRecord:
    return AnswerRecord(
        id=str(row.id),
        room_id=str(row.room_id),
        participant_id=str(row.participant_id),
        question_id=row.question_id,
        selected_option_id=row.selected_option_id,
        is_correct=row.is_correct,
        response_time_ms=row.response_time_ms,
        points_earned=row.points_earned,
        responded_at=row.created_at,
    )


def question_from_row(row: LiveQuestion) -> Question:
    return Question(
        id=row.id,
        text=row.text,
        options=tuple(
            QuestionOption(id=str(option["id"]), text=str(option["text"])) for option in row.options or ()
        ),
        correct_option_id=row.correct_option_id,
        difficulty=row.difficulty,
        category=row.category,
        source_info=row.source_info,
    )


def _answer_payload(answer: AnswerRecord) -> dict[str, Any]:
    return {
        "id": answer.id,
        "room_id": answer.room_id,
        "participant_id": answer.participant_id,
        "question_id": answer.question_id,
        "selected_option_id": answer.selected_option_id,
        "is_correct": answer.is_correct,
        "response_time_ms": answer.response_time_ms,
        "points_earned": answer.points_earned,
    }


class SqlRoomStore:
    """PostgreSQL-backed room store; every call is its own short transaction.

    Database failures surface as StoreUnavailableError. When a publisher is
    given, committed writes are also announced on the change feed.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        publisher: ChangePublisher | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._publisher = publisher

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory.begin() as session:
                yield session
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("live_store_operation_failed", operation=operation, exc_info=exc)
            raise StoreUnavailableError(operation) from exc

    async def _announce(self, room_id: str, table: str, event_type: str, new: dict[str, Any]) -> None:
        if self._publisher is None:
            return
        await self._publisher.publish(
            ChangeEvent(table=table, event_type=event_type, new=new),
            room_id=room_id,
        )

    async def get_room_by_code(self, code: str) -> RoomSnapshot | None:
        async with self._transaction("get_room_by_code") as session:
            row = await LiveRoomsRepo.get_by_code(session, code.strip().upper())
            return room_snapshot(row) if row is not None else None

    async def get_room(self, room_id: str) -> RoomSnapshot | None:
        room_uuid = parse_uuid(room_id)
        if room_uuid is None:
            return None
        async with self._transaction("get_room") as session:
            row = await LiveRoomsRepo.get_by_id(session, room_uuid)
            return room_snapshot(row) if row is not None else None

    async def room_code_exists(self, code: str) -> bool:
        async with self._transaction("room_code_exists") as session:
            return await LiveRoomsRepo.code_exists(session, code)

    async def insert_room(
        self,
        *,
        code: str,
        host_id: str | None,
        question_ids: Sequence[str],
        settings: RoomSettings,
    ) -> RoomSnapshot:
        try:
            async with self._transaction("insert_room") as session:
                row = await LiveRoomsRepo.create(
                    session,
                    room=LiveRoom(
                        code=code,
                        host_id=host_id,
                        status=ROOM_STATUS_WAITING,
                        current_question_index=0,
                        question_ids=list(question_ids),
                        settings=settings.to_dict(),
                        question_started_at=None,
                    ),
                )
                room = room_snapshot(row)
        except StoreUnavailableError as exc:
            # Another host claimed the same code between the check and the insert.
            if isinstance(exc.__cause__, IntegrityError) and await self.room_code_exists(code):
                raise RoomCodeTakenError(code) from exc
            raise
        await self._announce(room.id, TABLE_ROOMS, EVENT_INSERT, room.to_dict())
        return room

    async def update_room(self, room_id: str, **fields: Any) -> RoomSnapshot | None:
        unknown = set(fields) - ROOM_UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"room fields are not updatable: {sorted(unknown)}")
        room_uuid = parse_uuid(room_id)
        if room_uuid is None:
            return None
        async with self._transaction("update_room") as session:
            row = await LiveRoomsRepo.update_fields(session, room_uuid, **fields)
            room = room_snapshot(row) if row is not None else None
        if room is not None:
            await self._announce(room.id, TABLE_ROOMS, EVENT_UPDATE, room.to_dict())
        return room

    async def list_participants(self, room_id: str) -> list[ParticipantSnapshot]:
        room_uuid = parse_uuid(room_id)
        if room_uuid is None:
            return []
        async with self._transaction("list_participants") as session:
            rows = await LiveParticipantsRepo.list_for_room(session, room_uuid)
            return [participant_snapshot(row) for row in rows]

    async def get_participant(self, participant_id: str) -> ParticipantSnapshot | None:
        participant_uuid = parse_uuid(participant_id)
        if participant_uuid is None:
            return None
        async with self._transaction("get_participant") as session:
            row = await LiveParticipantsRepo.get_by_id(session, participant_uuid)
            return participant_snapshot(row) if row is not None else None

    async def find_participant(self, room_id: str, player_id: str) -> ParticipantSnapshot | None:
        room_uuid = parse_uuid(room_id)
        if room_uuid is None:
            return None
        async with self._transaction("find_participant") as session:
            row = await LiveParticipantsRepo.get_by_room_player(session, room_id=room_uuid, player_id=player_id)
            return participant_snapshot(row) if row is not None else None

    async def insert_participant(
        self,
        *,
        room_id: str,
        player_id: str | None,
        nickname: str,
        avatar: str | None,
        team: str | None,
    ) -> ParticipantSnapshot:
        room_uuid = parse_uuid(room_id)
        if room_uuid is None:
            raise ValueError(f"invalid room id: {room_id!r}")
        try:
            async with self._transaction("insert_participant") as session:
                row = await LiveParticipantsRepo.create(
                    session,
                    participant=LiveParticipant(
                        room_id=room_uuid,
                        player_id=player_id,
                        nickname=nickname,
                        avatar=avatar,
                        team=team,
                        score=0,
                        streak=0,
                    ),
                )
                participant = participant_snapshot(row)
        except StoreUnavailableError as exc:
            # Lost a race with the same player joining from another tab.
            if player_id is None or not isinstance(exc.__cause__, IntegrityError):
                raise
            existing = await self.find_participant(room_id, player_id)
            if existing is None:
                raise
            return existing
        await self._announce(participant.room_id, TABLE_PARTICIPANTS, EVENT_INSERT, participant.to_dict())
        return participant

    async def update_participant_score(
        self,
        participant_id: str,
        *,
        score: int,
        streak: int,
    ) -> ParticipantSnapshot | None:
        participant_uuid = parse_uuid(participant_id)
        if participant_uuid is None:
            return None
        async with self._transaction("update_participant_score") as session:
            row = await LiveParticipantsRepo.set_score(session, participant_uuid, score=score, streak=streak)
            participant = participant_snapshot(row) if row is not None else None
        if participant is not None:
            await self._announce(participant.room_id, TABLE_PARTICIPANTS, EVENT_UPDATE, participant.to_dict())
        return participant

    async def insert_answer(self, answer: AnswerRecord) -> AnswerRecord:
        room_uuid = parse_uuid(answer.room_id)
        participant_uuid = parse_uuid(answer.participant_id)
        if room_uuid is None or participant_uuid is None:
            raise ValueError("answer must reference a room and participant by UUID")
        async with self._transaction("insert_answer") as session:
            row = await LiveAnswersRepo.create(
                session,
                answer=LiveAnswer(
                    room_id=room_uuid,
                    participant_id=participant_uuid,
                    question_id=answer.question_id,
                    selected_option_id=answer.selected_option_id,
                    is_correct=answer.is_correct,
                    response_time_ms=answer.response_time_ms,
                    points_earned=answer.points_earned,
                ),
            )
            stored = answer_record(row)
        await self._announce(stored.room_id, TABLE_ANSWERS, EVENT_INSERT, _answer_payload(stored))
        return stored

    async def has_answer(self, *, room_id: str, participant_id: str, question_id: str) -> bool:
        room_uuid = parse_uuid(room_id)
        participant_uuid = parse_uuid(participant_id)
        if room_uuid is None or participant_uuid is None:
            return False
        async with self._transaction("has_answer") as session:
            return await LiveAnswersRepo.exists_for_question(
                session,
                room_id=room_uuid,
                participant_id=participant_uuid,
                question_id=question_id,
            )

    async def count_answers(self, *, room_id: str, question_id: str) -> int:
        room_uuid = parse_uuid(room_id)
        if room_uuid is None:
            return 0
        async with self._transaction("count_answers") as session:
            return await LiveAnswersRepo.count_for_question(session, room_id=room_uuid, question_id=question_id)

    async def list_participant_answers(self, *, room_id: str, participant_id: str) -> list[AnswerRecord]:
        room_uuid = parse_uuid(room_id)
        participant_uuid = parse_uuid(participant_id)
        if room_uuid is None or participant_uuid is None:
            return []
        async with self._transaction("list_participant_answers") as session:
            rows = await LiveAnswersRepo.list_for_participant(
                session,
                room_id=room_uuid,
                participant_id=participant_uuid,
            )
            return [answer_record(row) for row in rows]


class SqlQuestionBank:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_questions(self, question_ids: Sequence[str]) -> list[Question]:
        try:
            async with self._session_factory.begin() as session:
                rows = await LiveQuestionsRepo.list_by_ids(session, list(question_ids))
                return [question_from_row(row) for row in rows]
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("live_question_bank_failed", questions=len(question_ids), exc_info=exc)
            raise StoreUnavailableError("get_questions") from exc
