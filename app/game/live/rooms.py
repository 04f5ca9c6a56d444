from __future__ import annotations

import secrets
from collections.abc import Sequence

import structlog

from app.game.live.constants import (
    ALLOWED_TEAMS,
    ROOM_CODE_ALPHABET,
    ROOM_CODE_ATTEMPTS,
    ROOM_CODE_LENGTH,
)
from app.game.live.errors import RoomCodeExhaustedError, RoomCodeTakenError, RoomNotFoundError
from app.game.live.ports import RoomStore
from app.game.live.types import ParticipantSnapshot, RoomSettings, RoomSnapshot

logger = structlog.get_logger(__name__)


def generate_room_code(length: int = ROOM_CODE_LENGTH) -> str:
    return "".join(secrets.choice(ROOM_CODE_ALPHABET) for _ in range(length))


async def create_room(
    store: RoomStore,
    *,
    host_player_id: str,
    host_nickname: str,
    question_ids: Sequence[str],
    settings: RoomSettings,
    host_avatar: str | None = None,
    max_attempts: int = ROOM_CODE_ATTEMPTS,
) -> tuple[RoomSnapshot, ParticipantSnapshot]:
    """Creates a waiting room and seats the host as its first participant."""
    room: RoomSnapshot | None = None
    for _ in range(max(1, max_attempts)):
        code = generate_room_code()
        if await store.room_code_exists(code):
            continue
        try:
            room = await store.insert_room(
                code=code,
                host_id=host_player_id,
                question_ids=list(question_ids),
                settings=settings,
            )
        except RoomCodeTakenError:
            logger.info("live_room_code_collision", room_code=code)
            continue
        break
    if room is None:
        raise RoomCodeExhaustedError(f"no free room code after {max_attempts} attempts")

    host = await store.insert_participant(
        room_id=room.id,
        player_id=host_player_id,
        nickname=host_nickname.strip(),
        avatar=host_avatar,
        team=None,
    )
    logger.info("live_room_created", room_id=room.id, room_code=room.code, questions=len(room.question_ids))
    return room, host


async def join_room(
    store: RoomStore,
    *,
    room_code: str,
    player_id: str,
    nickname: str,
    avatar: str | None = None,
    team: str | None = None,
) -> tuple[RoomSnapshot, ParticipantSnapshot]:
    room = await store.get_room_by_code(room_code.strip().upper())
    if room is None or room.is_finished:
        raise RoomNotFoundError(room_code)

    existing = await store.find_participant(room.id, player_id)
    if existing is not None:
        logger.info("live_room_rejoined", room_id=room.id, participant_id=existing.id)
        return room, existing

    resolved_team = None
    if room.settings.mode == "teams":
        if team not in ALLOWED_TEAMS:
            raise ValueError(f"team must be one of {sorted(ALLOWED_TEAMS)}")
        resolved_team = team

    participant = await store.insert_participant(
        room_id=room.id,
        player_id=player_id,
        nickname=nickname.strip(),
        avatar=avatar,
        team=resolved_team,
    )
    logger.info("live_room_joined", room_id=room.id, participant_id=participant.id, team=resolved_team)
    return room, participant
