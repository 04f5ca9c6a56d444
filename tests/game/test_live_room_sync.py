from __future__ import annotations

import pytest

from app.game.live.constants import EVENT_DELETE, TABLE_PARTICIPANTS
from app.game.live.errors import RoomNotFoundError
from app.game.live.room_sync import RoomSynchronizer
from app.game.live.types import AnswerRecord, ChangeEvent, RoomSnapshot
from tests.game.live_fakes import FakeChangeFeed, FakeRoomStore, wait_until


def _setup(poll_interval: float = 60.0) -> tuple[FakeRoomStore, FakeChangeFeed, RoomSynchronizer]:
    feed = FakeChangeFeed()
    store = FakeRoomStore(feed=feed)
    sync = RoomSynchronizer(store=store, feed=feed, poll_interval=poll_interval)
    return store, feed, sync


@pytest.mark.asyncio
async def test_unknown_room_code_fails_before_any_channel_opens() -> None:
    store, feed, sync = _setup()
    store.add_room(code="ZZZ999")

    with pytest.raises(RoomNotFoundError):
        await sync.start("abc123")

    assert feed.open_subscriptions() == 0
    assert sync.is_running is False


@pytest.mark.asyncio
async def test_start_loads_mirror_case_insensitively() -> None:
    store, feed, sync = _setup()
    room = store.add_room(code="ABC123")
    store.add_participant(room.id, nickname="ann")
    store.add_participant(room.id, nickname="bob")

    loaded = await sync.start(" abc123 ")

    assert loaded.id == room.id
    assert [p.nickname for p in sync.participants] == ["ann", "bob"]
    assert feed.open_subscriptions() == 3
    assert sync.is_running is True
    await sync.aclose()


@pytest.mark.asyncio
async def test_duplicated_push_reaches_listeners_once() -> None:
    store, feed, sync = _setup()
    room = store.add_room()
    seen: list[RoomSnapshot] = []
    sync.add_room_listener(seen.append)
    await sync.start(room.code)
    feed.duplicate = True

    await store.update_room(room.id, status="active", question_started_at=store.clock())
    await wait_until(lambda: len(seen) == 1)
    await sync.poll_once()

    assert len(seen) == 1
    assert sync.room is not None and sync.room.status == "active"
    await sync.aclose()


@pytest.mark.asyncio
async def test_polling_catches_changes_the_push_channel_dropped() -> None:
    store, feed, sync = _setup()
    room = store.add_room()
    seen: list[RoomSnapshot] = []
    sync.add_room_listener(seen.append)
    await sync.start(room.code)
    feed.drop = True

    await store.update_room(room.id, status="active", question_started_at=store.clock())
    assert seen == []

    await sync.poll_once()
    await sync.poll_once()

    assert len(seen) == 1
    assert seen[0].status == "active"
    await sync.aclose()


@pytest.mark.asyncio
async def test_unchanged_room_on_consecutive_polls_is_ignored() -> None:
    store, _, sync = _setup()
    room = store.add_room(status="active", question_started_at="2026-03-01 12:00:00.000000+00")
    seen: list[RoomSnapshot] = []
    sync.add_room_listener(seen.append)
    await sync.start(room.code)

    store.set_room(room.id, question_started_at="2026-03-01T12:00:00Z")
    await sync.poll_once()
    await sync.poll_once()

    assert seen == []
    await sync.aclose()


@pytest.mark.asyncio
async def test_poll_loop_survives_store_failures() -> None:
    store, feed, sync = _setup(poll_interval=0.01)
    room = store.add_room()
    seen: list[RoomSnapshot] = []
    sync.add_room_listener(seen.append)
    await sync.start(room.code)
    feed.drop = True
    store.fail_next["get_room"] = 3

    store.set_room(room.id, status="active", question_started_at=store.clock())
    await wait_until(lambda: len(seen) == 1)

    assert sync.is_running is True
    await sync.aclose()


@pytest.mark.asyncio
async def test_answer_inserts_refresh_the_count_without_double_counting() -> None:
    store, feed, sync = _setup()
    room = store.add_room(status="active", question_started_at="2026-03-01T12:00:00Z")
    participant = store.add_participant(room.id)
    counts: list[tuple[str | None, int]] = []
    sync.add_answers_listener(lambda qid, count: counts.append((qid, count)))
    await sync.start(room.code)
    feed.duplicate = True

    await store.insert_answer(
        AnswerRecord(
            room_id=room.id,
            participant_id=participant.id,
            question_id="q1",
            selected_option_id="a",
            is_correct=True,
            response_time_ms=1_000,
            points_earned=280,
        )
    )
    await wait_until(lambda: sync.answers_count == 1)
    await sync.poll_once()

    assert counts == [("q1", 0), ("q1", 1)]
    await sync.aclose()


@pytest.mark.asyncio
async def test_participant_events_update_the_roster() -> None:
    store, _, sync = _setup()
    room = store.add_room()
    first = store.add_participant(room.id, nickname="ann")
    rosters: list[list[str]] = []
    sync.add_participants_listener(lambda ps: rosters.append([p.nickname for p in ps]))
    await sync.start(room.code)

    await store.insert_participant(room_id=room.id, player_id="p-2", nickname="bob", avatar=None, team=None)
    await wait_until(lambda: sync.participant_count == 2)
    await store.update_participant_score(first.id, score=300, streak=1)
    await wait_until(lambda: sync.participants[0].score == 300)
    sync.apply_participant_event(
        ChangeEvent(table=TABLE_PARTICIPANTS, event_type=EVENT_DELETE, old={"id": first.id})
    )

    assert rosters == [["ann", "bob"], ["ann", "bob"], ["bob"]]
    await sync.aclose()


@pytest.mark.asyncio
async def test_failed_subscription_leaves_polling_in_charge() -> None:
    store, feed, sync = _setup()
    room = store.add_room()
    feed.fail_subscribe = {"answers"}

    await sync.start(room.code)

    assert feed.open_subscriptions() == 2
    assert sync.is_running is True
    await sync.aclose()


@pytest.mark.asyncio
async def test_close_cancels_polling_and_unsubscribes() -> None:
    store, feed, sync = _setup(poll_interval=0.01)
    room = store.add_room()
    await sync.start(room.code)

    await sync.aclose()
    calls_after_close = len(store.calls)
    store.set_room(room.id, status="active", question_started_at=store.clock())

    assert feed.open_subscriptions() == 0
    assert sync.is_running is False
    assert sync.apply_room(store.rooms[room.id]) is False
    await sync.aclose()
    assert len(store.calls) == calls_after_close


@pytest.mark.asyncio
async def test_count_for_a_question_the_room_has_left_is_dropped() -> None:
    store, _, sync = _setup()
    room = store.add_room(status="active", question_started_at="2026-03-01T12:00:00Z", current_question_index=1)
    counts: list[tuple[str | None, int]] = []
    sync.add_answers_listener(lambda qid, count: counts.append((qid, count)))
    await sync.start(room.code)

    assert sync.apply_answers_count("q1", 4) is False
    assert sync.answers_count == 0
    assert sync.answers_question_id == "q2"
    assert counts == [("q2", 0)]
    await sync.aclose()
