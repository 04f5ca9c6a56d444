from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import datetime
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from redis.asyncio import Redis

from app.core.config import get_settings
from app.db.session import SessionLocal
from app.game.live.errors import RoomFinishedError, RoomMutationError, RoomNotFoundError
from app.game.live.ports import RoomMutations
from app.game.live.types import RoomSnapshot
from app.services.internal_auth import InternalAccessPolicy
from app.services.live_mutations import SqlRoomMutations
from app.services.live_realtime import RedisChangePublisher

router = APIRouter(tags=["internal", "live-rooms"])
logger = structlog.get_logger(__name__)


class NextQuestionRequest(BaseModel):
    next_index: int = Field(ge=0)


class LiveRoomResponse(BaseModel):
    id: str
    code: str
    status: str
    current_question_index: int = Field(ge=0)
    question_ids: list[str]
    settings: dict[str, Any]
    question_started_at: datetime | None = None
    host_id: str | None = None
    created_at: datetime | None = None


async def get_room_mutations() -> AsyncIterator[RoomMutations]:
    redis = Redis.from_url(get_settings().redis_url)
    try:
        yield SqlRoomMutations(SessionLocal, publisher=RedisChangePublisher(redis))
    finally:
        await redis.aclose()


def _assert_internal_access(request: Request) -> None:
    settings = get_settings()
    policy = InternalAccessPolicy(
        token=settings.internal_api_token,
        allowlist=settings.internal_api_allowlist,
        trusted_proxies=settings.internal_api_trusted_proxies,
    )
    reason = policy.denial_reason(request)
    if reason is not None:
        logger.warning("internal_live_rooms_auth_failed", reason=reason)
        raise HTTPException(status_code=403, detail={"code": "E_FORBIDDEN"})


async def _run_mutation(
    room_id: str,
    action: str,
    mutation: Callable[[], Awaitable[RoomSnapshot]],
) -> LiveRoomResponse:
    try:
        room = await mutation()
    except RoomNotFoundError as exc:
        raise HTTPException(status_code=404, detail={"code": "E_LIVE_ROOM_NOT_FOUND"}) from exc
    except RoomFinishedError as exc:
        raise HTTPException(status_code=409, detail={"code": "E_LIVE_ROOM_FINISHED"}) from exc
    except RoomMutationError as exc:
        logger.warning("internal_live_rooms_mutation_failed", room_id=room_id, action=action, exc_info=exc)
        raise HTTPException(status_code=503, detail={"code": "E_LIVE_ROOM_UNAVAILABLE"}) from exc
    return LiveRoomResponse.model_validate(room.to_dict())


@router.post("/internal/live-rooms/{room_id}/start", response_model=LiveRoomResponse)
async def start_live_room(
    room_id: str,
    request: Request,
    mutations: RoomMutations = Depends(get_room_mutations),
) -> LiveRoomResponse:
    _assert_internal_access(request)
    return await _run_mutation(room_id, "start", lambda: mutations.start_game(room_id))


@router.post("/internal/live-rooms/{room_id}/next", response_model=LiveRoomResponse)
async def advance_live_room(
    room_id: str,
    payload: NextQuestionRequest,
    request: Request,
    mutations: RoomMutations = Depends(get_room_mutations),
) -> LiveRoomResponse:
    _assert_internal_access(request)
    return await _run_mutation(
        room_id,
        "next",
        lambda: mutations.advance_question(room_id, payload.next_index),
    )


@router.post("/internal/live-rooms/{room_id}/finish", response_model=LiveRoomResponse)
async def finish_live_room(
    room_id: str,
    request: Request,
    mutations: RoomMutations = Depends(get_room_mutations),
) -> LiveRoomResponse:
    _assert_internal_access(request)
    return await _run_mutation(room_id, "finish", lambda: mutations.finish_game(room_id))
