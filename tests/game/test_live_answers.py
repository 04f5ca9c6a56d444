from __future__ import annotations

import asyncio

import pytest

from app.game.live.answers import AnswerSubmissionPipeline, check_full_coverage
from app.game.live.errors import StoreUnavailableError
from app.game.live.types import RoomSnapshot
from tests.game.live_fakes import FakeRoomStore, make_question


def _active_room(store: FakeRoomStore) -> RoomSnapshot:
    return store.add_room(status="active", question_started_at=store.clock())


@pytest.mark.asyncio
async def test_double_submit_writes_a_single_answer() -> None:
    store = FakeRoomStore()
    room = _active_room(store)
    participant = store.add_participant(room.id)
    pipeline = AnswerSubmissionPipeline(store=store)
    question = make_question("q1")

    first, second = await asyncio.gather(
        pipeline.submit(room=room, participant_id=participant.id, question=question, selected_option_id="a", response_time_ms=4_000),
        pipeline.submit(room=room, participant_id=participant.id, question=question, selected_option_id="b", response_time_ms=4_100),
    )

    assert first is not None
    assert second is None
    assert len(store.answers_for(participant.id)) == 1
    assert store.answers[0].selected_option_id == "a"


@pytest.mark.asyncio
async def test_correct_answer_scores_from_the_stored_streak() -> None:
    store = FakeRoomStore()
    room = _active_room(store)
    participant = store.add_participant(room.id, score=100, streak=2)
    pipeline = AnswerSubmissionPipeline(store=store)

    result = await pipeline.submit(
        room=room,
        participant_id=participant.id,
        question=make_question("q1", difficulty="medium"),
        selected_option_id="a",
        response_time_ms=5_000,
    )

    assert result is not None
    assert result.breakdown is not None
    assert result.breakdown.streak_count_used == 2
    assert result.answer.points_earned == 330
    assert result.new_score == 430
    assert result.new_streak == 3
    assert store.participants[participant.id].score == 430
    assert store.participants[participant.id].streak == 3


@pytest.mark.asyncio
async def test_wrong_answer_breaks_the_streak_and_earns_nothing() -> None:
    store = FakeRoomStore()
    room = _active_room(store)
    participant = store.add_participant(room.id, score=500, streak=4)
    pipeline = AnswerSubmissionPipeline(store=store)

    result = await pipeline.submit(
        room=room,
        participant_id=participant.id,
        question=make_question("q1"),
        selected_option_id="c",
        response_time_ms=2_000,
    )

    assert result is not None
    assert result.breakdown is None
    assert result.answer.is_correct is False
    assert result.answer.points_earned == 0
    assert store.participants[participant.id].score == 500
    assert store.participants[participant.id].streak == 0


@pytest.mark.asyncio
async def test_failed_insert_releases_the_claim() -> None:
    store = FakeRoomStore()
    room = _active_room(store)
    participant = store.add_participant(room.id)
    pipeline = AnswerSubmissionPipeline(store=store)
    question = make_question("q1")
    store.fail_next["insert_answer"] = 1

    with pytest.raises(StoreUnavailableError):
        await pipeline.submit(room=room, participant_id=participant.id, question=question, selected_option_id="a", response_time_ms=1_000)
    assert not pipeline.has_submitted(room_id=room.id, participant_id=participant.id, question_id="q1")

    retried = await pipeline.submit(room=room, participant_id=participant.id, question=question, selected_option_id="a", response_time_ms=1_000)

    assert retried is not None
    assert len(store.answers) == 1


@pytest.mark.asyncio
async def test_unknown_participant_is_not_recorded() -> None:
    store = FakeRoomStore()
    room = _active_room(store)
    other_room = store.add_room(code="OTHER1")
    stranger = store.add_participant(other_room.id)
    pipeline = AnswerSubmissionPipeline(store=store)

    result = await pipeline.submit(
        room=room,
        participant_id=stranger.id,
        question=make_question("q1"),
        selected_option_id="a",
        response_time_ms=1_000,
    )

    assert result is None
    assert store.answers == []
    assert not pipeline.has_submitted(room_id=room.id, participant_id=stranger.id, question_id="q1")


@pytest.mark.asyncio
async def test_failed_score_update_is_repaired_from_the_answer_log() -> None:
    store = FakeRoomStore()
    room = _active_room(store)
    participant = store.add_participant(room.id)
    pipeline = AnswerSubmissionPipeline(store=store)
    store.fail_next["update_participant_score"] = 1

    result = await pipeline.submit(
        room=room,
        participant_id=participant.id,
        question=make_question("q1"),
        selected_option_id="a",
        response_time_ms=0,
    )

    assert result is not None
    assert result.score_persisted is False
    assert store.participants[participant.id].score == 0
    assert pipeline.pending_repairs == {participant.id: room.id}

    store.fail_next["list_participant_answers"] = 1
    assert await pipeline.repair_pending() == 0
    assert participant.id in pipeline.pending_repairs

    assert await pipeline.repair_pending() == 1
    assert store.participants[participant.id].score == 300
    assert store.participants[participant.id].streak == 1
    assert pipeline.pending_repairs == {}


@pytest.mark.asyncio
async def test_timeout_is_recorded_as_an_incorrect_answer_at_the_limit() -> None:
    store = FakeRoomStore()
    room = _active_room(store)
    participant = store.add_participant(room.id, score=200, streak=3)
    pipeline = AnswerSubmissionPipeline(store=store)

    result = await pipeline.record_timeout(room=room, participant_id=participant.id, question=make_question("q1"))

    assert result is not None
    assert result.answer.timed_out is True
    assert result.answer.is_correct is False
    assert result.answer.response_time_ms == 20_000
    assert store.participants[participant.id].streak == 0
    assert store.participants[participant.id].score == 200


@pytest.mark.asyncio
async def test_timeout_skips_questions_already_answered_before_a_rejoin() -> None:
    store = FakeRoomStore()
    room = _active_room(store)
    participant = store.add_participant(room.id)
    question = make_question("q1")
    await AnswerSubmissionPipeline(store=store).submit(
        room=room, participant_id=participant.id, question=question, selected_option_id="a", response_time_ms=1_000
    )
    fresh_pipeline = AnswerSubmissionPipeline(store=store)

    result = await fresh_pipeline.record_timeout(room=room, participant_id=participant.id, question=question)

    assert result is None
    assert len(store.answers) == 1
    assert fresh_pipeline.has_submitted(room_id=room.id, participant_id=participant.id, question_id="q1")


@pytest.mark.asyncio
async def test_full_coverage_counts_answers_against_participants() -> None:
    store = FakeRoomStore()
    room = _active_room(store)
    ann = store.add_participant(room.id)
    bob = store.add_participant(room.id)
    pipeline = AnswerSubmissionPipeline(store=store)
    question = make_question("q1")

    await pipeline.submit(room=room, participant_id=ann.id, question=question, selected_option_id="a", response_time_ms=1_000)
    assert await check_full_coverage(store, room_id=room.id, question_id="q1", participant_count=2) is False

    await pipeline.submit(room=room, participant_id=bob.id, question=question, selected_option_id="b", response_time_ms=1_000)
    assert await check_full_coverage(store, room_id=room.id, question_id="q1", participant_count=2) is True
    assert await check_full_coverage(store, room_id=room.id, question_id="q1", participant_count=0) is False
