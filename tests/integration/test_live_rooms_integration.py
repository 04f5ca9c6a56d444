from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from app.db.session import SessionLocal
from app.game.live.answers import AnswerSubmissionPipeline
from app.game.live.errors import RoomCodeTakenError, RoomFinishedError, RoomNotFoundError
from app.game.live.rooms import create_room, join_room
from app.game.live.types import RoomSettings
from app.services.live_mutations import SqlRoomMutations
from app.services.live_store import SqlQuestionBank, SqlRoomStore
from tests.integration.live_room_fixtures import QUESTION_IDS, RecordingPublisher, seed_questions


async def _room_with_players(store: SqlRoomStore):
    await seed_questions(SessionLocal)
    room, host = await create_room(
        store,
        host_player_id="host-player",
        host_nickname="Host",
        question_ids=QUESTION_IDS,
        settings=RoomSettings(time_limit_seconds=20),
    )
    _, player = await join_room(store, room_code=room.code.lower(), player_id="player-1", nickname="Ann")
    return room, host, player


@pytest.mark.asyncio
async def test_rooms_and_participants_round_trip_through_postgres() -> None:
    publisher = RecordingPublisher()
    store = SqlRoomStore(SessionLocal, publisher=publisher)

    room, host, player = await _room_with_players(store)

    loaded = await store.get_room_by_code(room.code)
    assert loaded is not None
    assert loaded.question_ids == QUESTION_IDS
    assert loaded.status == "waiting"
    assert loaded.question_started_at is None
    assert [p.id for p in await store.list_participants(room.id)] == [host.id, player.id]
    assert publisher.tables() == ["rooms", "participants", "participants"]


@pytest.mark.asyncio
async def test_duplicate_join_returns_the_existing_participant() -> None:
    store = SqlRoomStore(SessionLocal)
    room, _, player = await _room_with_players(store)

    again = await store.insert_participant(
        room_id=room.id,
        player_id="player-1",
        nickname="Ann (other tab)",
        avatar=None,
        team=None,
    )

    assert again.id == player.id
    assert len(await store.list_participants(room.id)) == 2


@pytest.mark.asyncio
async def test_inserting_a_taken_room_code_reports_the_collision() -> None:
    store = SqlRoomStore(SessionLocal)
    room, _, _ = await _room_with_players(store)

    with pytest.raises(RoomCodeTakenError):
        await store.insert_room(
            code=room.code,
            host_id="other-host",
            question_ids=QUESTION_IDS,
            settings=RoomSettings(),
        )


@pytest.mark.asyncio
async def test_question_start_is_stamped_with_database_time() -> None:
    publisher = RecordingPublisher()
    store = SqlRoomStore(SessionLocal)
    mutations = SqlRoomMutations(SessionLocal, publisher=publisher)
    room, _, _ = await _room_with_players(store)

    before = datetime.now(timezone.utc)
    started = await mutations.start_game(room.id)

    assert started.status == "active"
    assert started.current_question_index == 0
    assert isinstance(started.question_started_at, datetime)
    assert abs(started.question_started_at - before) < timedelta(seconds=5)
    assert publisher.events[-1][1].new["status"] == "active"

    advanced = await mutations.advance_question(room.id, 1)
    assert advanced.current_question_index == 1
    assert advanced.question_started_at >= started.question_started_at


@pytest.mark.asyncio
async def test_advancing_past_the_last_question_finishes_the_room() -> None:
    store = SqlRoomStore(SessionLocal)
    mutations = SqlRoomMutations(SessionLocal)
    room, _, _ = await _room_with_players(store)
    await mutations.start_game(room.id)

    finished = await mutations.advance_question(room.id, len(QUESTION_IDS))

    assert finished.status == "finished"
    assert finished.question_started_at is None
    with pytest.raises(RoomFinishedError):
        await mutations.start_game(room.id)
    assert (await mutations.finish_game(room.id)).status == "finished"
    with pytest.raises(RoomNotFoundError):
        await join_room(store, room_code=room.code, player_id="late", nickname="Late")


@pytest.mark.asyncio
async def test_unknown_room_ids_are_not_found() -> None:
    mutations = SqlRoomMutations(SessionLocal)

    with pytest.raises(RoomNotFoundError):
        await mutations.start_game("not-a-uuid")
    with pytest.raises(RoomNotFoundError):
        await mutations.finish_game("6f1d1a8e-0c55-4a53-9d1e-8f6c1c2b3a4d")


@pytest.mark.asyncio
async def test_answers_and_scores_against_postgres() -> None:
    store = SqlRoomStore(SessionLocal)
    mutations = SqlRoomMutations(SessionLocal)
    room, host, player = await _room_with_players(store)
    room = await mutations.start_game(room.id)
    bank = SqlQuestionBank(SessionLocal)
    questions = {q.id: q for q in await bank.get_questions(room.question_ids)}
    pipeline = AnswerSubmissionPipeline(store=store)

    first, duplicate = await asyncio.gather(
        pipeline.submit(
            room=room,
            participant_id=player.id,
            question=questions["iq-1"],
            selected_option_id="a",
            response_time_ms=10_000,
        ),
        pipeline.submit(
            room=room,
            participant_id=player.id,
            question=questions["iq-1"],
            selected_option_id="a",
            response_time_ms=10_100,
        ),
    )
    await pipeline.record_timeout(room=room, participant_id=host.id, question=questions["iq-1"])

    assert first is not None and duplicate is None
    assert first.answer.points_earned == 125
    assert await store.count_answers(room_id=room.id, question_id="iq-1") == 2
    assert await store.has_answer(room_id=room.id, participant_id=host.id, question_id="iq-1") is True

    stored_player = await store.get_participant(player.id)
    assert stored_player is not None
    assert (stored_player.score, stored_player.streak) == (125, 1)

    answers = await store.list_participant_answers(room_id=room.id, participant_id=player.id)
    assert [a.question_id for a in answers] == ["iq-1"]
