from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from app.game.live.constants import (
    DEFAULT_POLL_INTERVAL_SECONDS,
    EVENT_DELETE,
    EVENT_INSERT,
    TABLE_ANSWERS,
    TABLE_PARTICIPANTS,
    TABLE_ROOMS,
)
from app.game.live.errors import RoomNotFoundError
from app.game.live.phases import QuestionKey, question_key
from app.game.live.ports import ChangeFeed, ChangeSubscription, RoomStore
from app.game.live.types import ChangeEvent, ParticipantSnapshot, RoomSnapshot

logger = structlog.get_logger(__name__)

RoomFingerprint = tuple[int, str, QuestionKey | None]
ParticipantsFingerprint = tuple[tuple[str, str, int, int, str | None], ...]


def room_fingerprint(room: RoomSnapshot) -> RoomFingerprint:
    return (room.current_question_index, room.status, question_key(room))


def participants_fingerprint(participants: list[ParticipantSnapshot]) -> ParticipantsFingerprint:
    return tuple(
        sorted((p.id, p.nickname, p.score, p.streak, p.team) for p in participants)
    )


class RoomSynchronizer:
    """Keeps a local mirror of one room fresh from push events and polling.

    Both channels feed the same apply-if-changed reducers, so a change seen on
    both (or delivered twice) reaches listeners once.
    """

    def __init__(
        self,
        *,
        store: RoomStore,
        feed: ChangeFeed,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
    ) -> None:
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        self._store = store
        self._feed = feed
        self._poll_interval = poll_interval

        self.room: RoomSnapshot | None = None
        self.participants: list[ParticipantSnapshot] = []
        self.answers_count = 0
        self._answers_question_id: str | None = None
        self._room_fingerprint: RoomFingerprint | None = None
        self._participants_fingerprint: ParticipantsFingerprint = ()

        self._room_listeners: list[Callable[[RoomSnapshot], None]] = []
        self._participants_listeners: list[Callable[[list[ParticipantSnapshot]], None]] = []
        self._answers_listeners: list[Callable[[str | None, int], None]] = []
        self._poll_hooks: list[Callable[[], Awaitable[None]]] = []

        self._poll_task: asyncio.Task[None] | None = None
        self._push_tasks: list[asyncio.Task[None]] = []
        self._subscriptions: list[ChangeSubscription] = []
        self._started = False
        self._closed = False

    @property
    def room_id(self) -> str | None:
        return self.room.id if self.room is not None else None

    @property
    def participant_count(self) -> int:
        return len(self.participants)

    @property
    def answers_question_id(self) -> str | None:
        return self._answers_question_id

    @property
    def is_running(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    def add_room_listener(self, listener: Callable[[RoomSnapshot], None]) -> None:
        self._room_listeners.append(listener)

    def add_participants_listener(self, listener: Callable[[list[ParticipantSnapshot]], None]) -> None:
        self._participants_listeners.append(listener)

    def add_answers_listener(self, listener: Callable[[str | None, int], None]) -> None:
        self._answers_listeners.append(listener)

    def add_poll_hook(self, hook: Callable[[], Awaitable[None]]) -> None:
        self._poll_hooks.append(hook)

    async def start(self, room_code: str) -> RoomSnapshot:
        if self._started:
            raise RuntimeError("synchronizer already started")
        room = await self._store.get_room_by_code(room_code.strip().upper())
        if room is None:
            logger.info("room_sync_room_not_found", room_code=room_code)
            raise RoomNotFoundError(room_code)
        self._started = True

        self.room = room
        self._room_fingerprint = room_fingerprint(room)
        self.participants = await self._store.list_participants(room.id)
        self._participants_fingerprint = participants_fingerprint(self.participants)
        await self.refresh_answers_count()

        for table in (TABLE_ROOMS, TABLE_PARTICIPANTS, TABLE_ANSWERS):
            await self._subscribe(table, room.id)
        self._poll_task = asyncio.get_running_loop().create_task(self._poll_loop())

        logger.info(
            "room_sync_started",
            room_id=room.id,
            status=room.status,
            question_index=room.current_question_index,
            participants=len(self.participants),
        )
        return room

    def apply_room(self, room: RoomSnapshot) -> bool:
        if self._closed or self.room is None or room.id != self.room.id:
            return False
        fingerprint = room_fingerprint(room)
        if fingerprint == self._room_fingerprint:
            return False
        self.room = room
        self._room_fingerprint = fingerprint
        if room.current_question_id != self._answers_question_id:
            self._answers_question_id = room.current_question_id
            self.answers_count = 0
        for listener in list(self._room_listeners):
            listener(room)
        return True

    def apply_participants(self, participants: list[ParticipantSnapshot]) -> bool:
        if self._closed:
            return False
        fingerprint = participants_fingerprint(participants)
        if fingerprint == self._participants_fingerprint:
            return False
        self.participants = list(participants)
        self._participants_fingerprint = fingerprint
        for listener in list(self._participants_listeners):
            listener(list(self.participants))
        return True

    def apply_participant_event(self, event: ChangeEvent) -> bool:
        updated = list(self.participants)
        if event.event_type == EVENT_DELETE:
            if not event.old:
                return False
            removed_id = str(event.old["id"])
            updated = [p for p in updated if p.id != removed_id]
        else:
            if not event.new:
                return False
            incoming = ParticipantSnapshot.from_mapping(event.new)
            if self.room is not None and incoming.room_id != self.room.id:
                return False
            for idx, current in enumerate(updated):
                if current.id == incoming.id:
                    updated[idx] = incoming
                    break
            else:
                updated.append(incoming)
        return self.apply_participants(updated)

    def apply_answers_count(self, question_id: str | None, count: int) -> bool:
        if self._closed:
            return False
        # A count fetched before the room advanced belongs to a question that is no longer live.
        if self.room is not None and question_id != self.room.current_question_id:
            logger.debug("room_sync_stale_answers_count_dropped", room_id=self.room.id, question_id=question_id)
            return False
        if question_id == self._answers_question_id and count == self.answers_count:
            return False
        self._answers_question_id = question_id
        self.answers_count = count
        for listener in list(self._answers_listeners):
            listener(question_id, count)
        return True

    async def refresh_answers_count(self) -> int:
        if self.room is None:
            return 0
        question_id = self.room.current_question_id
        count = 0
        if question_id is not None:
            count = await self._store.count_answers(room_id=self.room.id, question_id=question_id)
        self.apply_answers_count(question_id, count)
        return count

    async def poll_once(self) -> None:
        if self.room is None or self._closed:
            return
        room = await self._store.get_room(self.room.id)
        if room is not None:
            self.apply_room(room)
        self.apply_participants(await self._store.list_participants(self.room.id))
        await self.refresh_answers_count()
        for hook in list(self._poll_hooks):
            try:
                await hook()
            except Exception as exc:
                logger.warning("room_sync_poll_hook_failed", room_id=self.room_id, exc_info=exc)

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        tasks = [task for task in (self._poll_task, *self._push_tasks) if task is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        for subscription in self._subscriptions:
            try:
                await subscription.aclose()
            except Exception as exc:
                logger.warning("room_sync_unsubscribe_failed", room_id=self.room_id, exc_info=exc)
        self._poll_task = None
        self._push_tasks.clear()
        self._subscriptions.clear()
        logger.info("room_sync_closed", room_id=self.room_id)

    async def _subscribe(self, table: str, room_id: str) -> None:
        try:
            subscription = await self._feed.subscribe(table, room_id=room_id)
        except Exception as exc:
            # Polling still covers this table.
            logger.warning("room_sync_subscribe_failed", room_id=room_id, table=table, exc_info=exc)
            return
        self._subscriptions.append(subscription)
        self._push_tasks.append(
            asyncio.get_running_loop().create_task(self._consume(table, subscription))
        )

    async def _consume(self, table: str, subscription: ChangeSubscription) -> None:
        try:
            async for event in subscription:
                if self._closed:
                    return
                try:
                    await self._apply_event(table, event)
                except Exception as exc:
                    logger.warning(
                        "room_sync_push_apply_failed",
                        room_id=self.room_id,
                        table=table,
                        event_type=event.event_type,
                        exc_info=exc,
                    )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("room_sync_push_channel_failed", room_id=self.room_id, table=table, exc_info=exc)

    async def _apply_event(self, table: str, event: ChangeEvent) -> None:
        if table == TABLE_ROOMS:
            if event.new:
                self.apply_room(RoomSnapshot.from_mapping(event.new))
        elif table == TABLE_PARTICIPANTS:
            self.apply_participant_event(event)
        elif table == TABLE_ANSWERS and event.event_type == EVENT_INSERT:
            await self.refresh_answers_count()

    async def _poll_loop(self) -> None:
        while not self._closed:
            await asyncio.sleep(self._poll_interval)
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("room_sync_poll_failed", room_id=self.room_id, exc_info=exc)
