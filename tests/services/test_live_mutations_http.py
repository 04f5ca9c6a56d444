from __future__ import annotations

import json

import httpx
import pytest

from app.game.live.errors import RoomFinishedError, RoomMutationError, RoomNotFoundError
from app.services.live_mutations import HttpRoomMutations

ROOM_PAYLOAD = {
    "id": "0b6f3c1e-2d7a-4f51-9a7e-3c3d8f0a1b2c",
    "code": "ABC123",
    "status": "active",
    "current_question_index": 1,
    "question_ids": ["q1", "q2", "q3"],
    "settings": {"time_limit_seconds": 20, "mode": "solo"},
    "question_started_at": "2026-03-01T12:00:00+00:00",
    "host_id": "host-1",
    "created_at": "2026-03-01T11:55:00+00:00",
}


def _mutations(handler) -> HttpRoomMutations:
    return HttpRoomMutations(
        base_url="http://live-api.internal/",
        token="internal-secret",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_advance_posts_index_with_internal_token() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=ROOM_PAYLOAD)

    async with _mutations(handler) as mutations:
        room = await mutations.advance_question(ROOM_PAYLOAD["id"], 1)

    assert room.current_question_index == 1
    assert room.question_ids == ("q1", "q2", "q3")
    assert room.question_started_at == "2026-03-01T12:00:00+00:00"
    assert seen[0].url.path == f"/internal/live-rooms/{ROOM_PAYLOAD['id']}/next"
    assert seen[0].headers["X-Internal-Token"] == "internal-secret"
    assert json.loads(seen[0].content) == {"next_index": 1}


@pytest.mark.asyncio
async def test_start_and_finish_hit_their_endpoints() -> None:
    paths: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path)
        return httpx.Response(200, json=ROOM_PAYLOAD)

    async with _mutations(handler) as mutations:
        await mutations.start_game("room-1")
        await mutations.finish_game("room-1")

    assert paths == ["/internal/live-rooms/room-1/start", "/internal/live-rooms/room-1/finish"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status_code", "error"),
    [(404, RoomNotFoundError), (409, RoomFinishedError), (403, RoomMutationError), (503, RoomMutationError)],
)
async def test_error_statuses_map_to_domain_errors(status_code: int, error: type[Exception]) -> None:
    async with _mutations(lambda request: httpx.Response(status_code, json={"detail": {}})) as mutations:
        with pytest.raises(error):
            await mutations.start_game("room-1")


@pytest.mark.asyncio
async def test_transport_failure_is_a_mutation_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with _mutations(handler) as mutations:
        with pytest.raises(RoomMutationError):
            await mutations.start_game("room-1")


@pytest.mark.asyncio
async def test_malformed_payload_is_a_mutation_error() -> None:
    async with _mutations(lambda request: httpx.Response(200, json={"status": "active"})) as mutations:
        with pytest.raises(RoomMutationError):
            await mutations.finish_game("room-1")


def test_finished_room_is_not_a_mutation_error() -> None:
    # The session falls back to a client-stamped write on RoomMutationError only.
    assert not issubclass(RoomFinishedError, RoomMutationError)
