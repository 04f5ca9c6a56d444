from app.game.live.errors import (
    LiveGameError,
    NotHostError,
    RoomFinishedError,
    RoomNotFoundError,
    StoreUnavailableError,
)
from app.game.live.rooms import create_room, join_room
from app.game.live.session import GameSession
from app.game.live.types import GamePhase, RoomSettings

__all__ = [
    "GamePhase",
    "GameSession",
    "LiveGameError",
    "NotHostError",
    "RoomFinishedError",
    "RoomNotFoundError",
    "RoomSettings",
    "StoreUnavailableError",
    "create_room",
    "join_room",
]
