"""Collaborators the live game engine talks to.

The engine never touches a database, Redis or HTTP directly; it is handed
objects satisfying these protocols. `app.services.live_store`,
`app.services.live_realtime` and `app.services.live_mutations` hold the
production implementations.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from typing import Any, Protocol

from app.game.live.types import (
    AnswerRecord,
    ChangeEvent,
    ParticipantSnapshot,
    Question,
    RoomSettings,
    RoomSnapshot,
)


class RoomStore(Protocol):
    async def get_room_by_code(self, code: str) -> RoomSnapshot | None: ...

    async def get_room(self, room_id: str) -> RoomSnapshot | None: ...

    async def room_code_exists(self, code: str) -> bool: ...

    # Raises RoomCodeTakenError when another room already holds `code`.
    async def insert_room(
        self,
        *,
        code: str,
        host_id: str | None,
        question_ids: Sequence[str],
        settings: RoomSettings,
    ) -> RoomSnapshot: ...

    async def update_room(self, room_id: str, **fields: Any) -> RoomSnapshot | None: ...

    async def list_participants(self, room_id: str) -> list[ParticipantSnapshot]: ...

    async def get_participant(self, participant_id: str) -> ParticipantSnapshot | None: ...

    async def find_participant(self, room_id: str, player_id: str) -> ParticipantSnapshot | None: ...

    async def insert_participant(
        self,
        *,
        room_id: str,
        player_id: str | None,
        nickname: str,
        avatar: str | None,
        team: str | None,
    ) -> ParticipantSnapshot: ...

    async def update_participant_score(
        self,
        participant_id: str,
        *,
        score: int,
        streak: int,
    ) -> ParticipantSnapshot | None: ...

    async def insert_answer(self, answer: AnswerRecord) -> AnswerRecord: ...

    async def has_answer(self, *, room_id: str, participant_id: str, question_id: str) -> bool: ...

    async def count_answers(self, *, room_id: str, question_id: str) -> int: ...

    async def list_participant_answers(self, *, room_id: str, participant_id: str) -> list[AnswerRecord]: ...


class QuestionBank(Protocol):
    async def get_questions(self, question_ids: Sequence[str]) -> list[Question]: ...


class RoomMutations(Protocol):
    """Room transitions stamped with the store's own clock."""

    async def start_game(self, room_id: str) -> RoomSnapshot: ...

    async def advance_question(self, room_id: str, next_index: int) -> RoomSnapshot: ...

    async def finish_game(self, room_id: str) -> RoomSnapshot: ...


class ChangeSubscription(Protocol):
    def __aiter__(self) -> AsyncIterator[ChangeEvent]: ...

    async def aclose(self) -> None: ...


class ChangeFeed(Protocol):
    async def subscribe(self, table: str, *, room_id: str) -> ChangeSubscription: ...


class BroadcastChannel(Protocol):
    async def subscribe(self) -> None:
        """Returns once the channel subscription is confirmed active."""

    async def publish(self, event: str, payload: dict[str, Any]) -> None: ...

    def listen(self, event: str) -> AsyncIterator[dict[str, Any]]: ...

    async def aclose(self) -> None: ...


class BroadcastHub(Protocol):
    def channel(self, topic: str) -> BroadcastChannel: ...
