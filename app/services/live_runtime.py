from __future__ import annotations

from collections.abc import AsyncIterator, Callable, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass

import structlog
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import Settings
from app.db.session import SessionLocal
from app.game.live.ports import RoomMutations
from app.game.live.rooms import create_room, join_room
from app.game.live.session import GameSession
from app.game.live.types import ParticipantSnapshot, RoomSettings, RoomSnapshot
from app.services.live_mutations import HttpRoomMutations, SqlRoomMutations
from app.services.live_realtime import RedisBroadcastHub, RedisChangeFeed, RedisChangePublisher
from app.services.live_store import ChangePublisher, SqlQuestionBank, SqlRoomStore

logger = structlog.get_logger(__name__)


def build_room_mutations(
    settings: Settings,
    *,
    session_factory: async_sessionmaker[AsyncSession] = SessionLocal,
    publisher: ChangePublisher | None = None,
) -> RoomMutations:
    """Uses the internal HTTP endpoints when a base URL is configured, the database otherwise."""
    if settings.live_mutations_base_url:
        return HttpRoomMutations(
            base_url=settings.live_mutations_base_url,
            token=settings.internal_api_token,
            timeout=settings.live_mutations_timeout_seconds,
        )
    return SqlRoomMutations(session_factory, publisher=publisher)


@dataclass(slots=True)
class LiveRuntime:
    """Process-wide adapters shared by every session this process opens."""

    settings: Settings
    store: SqlRoomStore
    question_bank: SqlQuestionBank
    feed: RedisChangeFeed
    broadcast_hub: RedisBroadcastHub
    mutations: RoomMutations

    async def create_room(
        self,
        *,
        host_player_id: str,
        host_nickname: str,
        question_ids: Sequence[str],
        settings: RoomSettings,
        host_avatar: str | None = None,
    ) -> tuple[RoomSnapshot, ParticipantSnapshot]:
        return await create_room(
            self.store,
            host_player_id=host_player_id,
            host_nickname=host_nickname,
            question_ids=question_ids,
            settings=settings,
            host_avatar=host_avatar,
            max_attempts=self.settings.live_room_code_attempts,
        )

    async def join_room(
        self,
        *,
        room_code: str,
        player_id: str,
        nickname: str,
        avatar: str | None = None,
        team: str | None = None,
    ) -> tuple[RoomSnapshot, ParticipantSnapshot]:
        return await join_room(
            self.store,
            room_code=room_code,
            player_id=player_id,
            nickname=nickname,
            avatar=avatar,
            team=team,
        )

    def session(
        self,
        *,
        room_code: str,
        participant_id: str | None,
        is_host: bool,
        on_tick: Callable[[float], None] | None = None,
    ) -> GameSession:
        return GameSession.from_settings(
            self.settings,
            room_code=room_code,
            participant_id=participant_id,
            is_host=is_host,
            store=self.store,
            question_bank=self.question_bank,
            feed=self.feed,
            mutations=self.mutations,
            broadcast_hub=self.broadcast_hub,
            on_tick=on_tick,
        )


@asynccontextmanager
async def open_live_runtime(
    settings: Settings,
    *,
    session_factory: async_sessionmaker[AsyncSession] = SessionLocal,
    redis: Redis | None = None,
) -> AsyncIterator[LiveRuntime]:
    owns_redis = redis is None
    client = redis if redis is not None else Redis.from_url(settings.redis_url)
    publisher = RedisChangePublisher(client)
    mutations = build_room_mutations(settings, session_factory=session_factory, publisher=publisher)
    runtime = LiveRuntime(
        settings=settings,
        store=SqlRoomStore(session_factory, publisher=publisher),
        question_bank=SqlQuestionBank(session_factory),
        feed=RedisChangeFeed(client),
        broadcast_hub=RedisBroadcastHub(client),
        mutations=mutations,
    )
    logger.info("live_runtime_opened", remote_mutations=isinstance(mutations, HttpRoomMutations))
    try:
        yield runtime
    finally:
        if isinstance(mutations, HttpRoomMutations):
            await mutations.aclose()
        if owns_redis:
            await client.aclose()
