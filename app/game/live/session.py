from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Coroutine
from datetime import datetime
from typing import Any

import structlog

from app.core.config import Settings
from app.core.logging import bind_live_context, clear_live_context
from app.game.live.answers import AnswerSubmissionPipeline
from app.game.live.clock import utc_now
from app.game.live.constants import (
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_TIMER_TICK_SECONDS,
    ROOM_STATUS_ACTIVE,
    ROOM_STATUS_FINISHED,
)
from app.game.live.countdown import CountdownListener, HostCountdownBroadcaster
from app.game.live.errors import (
    EmptyQuestionSetError,
    NotHostError,
    RoomMutationError,
    RoomNotFoundError,
    StoreUnavailableError,
)
from app.game.live.phases import (
    REASON_CLOCK_ERROR,
    REASON_EXPIRED,
    PhaseChange,
    SessionStateMachine,
)
from app.game.live.ports import BroadcastHub, ChangeFeed, QuestionBank, RoomMutations, RoomStore
from app.game.live.results import StandingRow, TeamTotals, build_leaderboard, team_totals
from app.game.live.room_sync import RoomSynchronizer
from app.game.live.types import (
    AnswerSubmission,
    GamePhase,
    ParticipantSnapshot,
    Question,
    QuestionState,
    RoomSnapshot,
)

logger = structlog.get_logger(__name__)


class GameSession:
    """Per-client context for one room, host or player.

    Built when a client enters a room and closed when it leaves; closing
    cancels the countdown, the polling loop and every subscription. There is
    no shared session registry: two clients in the same process get two
    independent sessions.
    """

    def __init__(
        self,
        *,
        room_code: str,
        participant_id: str | None,
        is_host: bool,
        store: RoomStore,
        question_bank: QuestionBank,
        feed: ChangeFeed,
        mutations: RoomMutations,
        broadcast_hub: BroadcastHub,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        tick_interval: float = DEFAULT_TIMER_TICK_SECONDS,
        countdown_broadcaster: HostCountdownBroadcaster | None = None,
        on_tick: Callable[[float], None] | None = None,
        wall_clock: Callable[[], datetime] = utc_now,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.room_code = room_code.strip().upper()
        self.participant_id = participant_id
        self.is_host = is_host
        self._store = store
        self._question_bank = question_bank
        self._mutations = mutations
        self._broadcast_hub = broadcast_hub
        self._wall_clock = wall_clock

        self.synchronizer = RoomSynchronizer(store=store, feed=feed, poll_interval=poll_interval)
        self.machine = SessionStateMachine(
            tick_interval=tick_interval,
            on_tick=on_tick,
            wall_clock=wall_clock,
            monotonic=monotonic,
        )
        self.pipeline = AnswerSubmissionPipeline(store=store)
        self.countdown_broadcaster = countdown_broadcaster or HostCountdownBroadcaster(broadcast_hub)
        self.questions: list[Question] = []
        self.last_error: str | None = None

        self._countdown_listener: CountdownListener | None = None
        self._background: set[asyncio.Task[Any]] = set()
        self._entered = False
        self._closed = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        room_code: str,
        participant_id: str | None,
        is_host: bool,
        store: RoomStore,
        question_bank: QuestionBank,
        feed: ChangeFeed,
        mutations: RoomMutations,
        broadcast_hub: BroadcastHub,
        on_tick: Callable[[float], None] | None = None,
    ) -> GameSession:
        return cls(
            room_code=room_code,
            participant_id=participant_id,
            is_host=is_host,
            store=store,
            question_bank=question_bank,
            feed=feed,
            mutations=mutations,
            broadcast_hub=broadcast_hub,
            poll_interval=settings.live_poll_interval_seconds,
            tick_interval=settings.live_timer_tick_seconds,
            countdown_broadcaster=HostCountdownBroadcaster(
                broadcast_hub,
                start=settings.live_countdown_start,
                grace_period=settings.live_countdown_grace_seconds,
                redundant_sends=settings.live_countdown_redundant_sends,
                send_stagger=settings.live_countdown_send_stagger_seconds,
                step_seconds=settings.live_countdown_step_seconds,
            ),
            on_tick=on_tick,
        )

    async def __aenter__(self) -> GameSession:
        await self.enter()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    @property
    def room(self) -> RoomSnapshot | None:
        return self.synchronizer.room

    @property
    def participants(self) -> list[ParticipantSnapshot]:
        return list(self.synchronizer.participants)

    @property
    def phase(self) -> GamePhase:
        return self.machine.phase

    @property
    def time_left(self) -> int:
        return self.machine.time_left

    @property
    def question_state(self) -> QuestionState:
        return self.machine.question

    @property
    def answers_count(self) -> int:
        return self.synchronizer.answers_count

    @property
    def current_question(self) -> Question | None:
        room = self.room
        if room is None:
            return None
        if 0 <= room.current_question_index < len(self.questions):
            return self.questions[room.current_question_index]
        return None

    @property
    def can_reveal_answer(self) -> bool:
        return self.machine.can_reveal_answer

    def leaderboard(self) -> list[StandingRow]:
        return build_leaderboard(self.participants)

    def team_totals(self) -> TeamTotals | None:
        room = self.room
        if room is None or room.settings.mode != "teams":
            return None
        return team_totals(self.participants)

    def add_phase_listener(self, listener: Callable[[PhaseChange], None]) -> None:
        self.machine.add_listener(listener)

    async def enter(self) -> RoomSnapshot:
        if self._entered:
            raise RuntimeError("session already entered")
        self._entered = True
        bind_live_context(room_code=self.room_code, participant_id=self.participant_id, is_host=self.is_host)

        self.synchronizer.add_room_listener(self._on_room)
        self.synchronizer.add_participants_listener(self._on_participants)
        self.synchronizer.add_answers_listener(self._on_answers)
        self.synchronizer.add_poll_hook(self._repair_scores)
        self.machine.add_listener(self._on_phase_change)

        room = await self.synchronizer.start(self.room_code)
        try:
            self.questions = await self._load_questions(room)
        except BaseException:
            await self.synchronizer.aclose()
            raise
        if not self.questions:
            await self.synchronizer.aclose()
            raise EmptyQuestionSetError(room.id)

        # The mirror may already be ahead of `room` if a push landed meanwhile.
        current = self.synchronizer.room or room
        self.machine.observe_room(current)
        self._on_answers(self.synchronizer.answers_question_id, self.synchronizer.answers_count)
        logger.info(
            "live_session_entered",
            room_id=current.id,
            participant_id=self.participant_id,
            is_host=self.is_host,
            phase=self.machine.phase.value,
        )
        return current

    async def listen_for_countdown(self, on_value: Callable[[int], None]) -> None:
        room = self._require_room()
        if self._countdown_listener is not None:
            return
        listener = CountdownListener(self._broadcast_hub, on_value=on_value)
        await listener.start(room.id)
        self._countdown_listener = listener

    async def start_with_countdown(self, on_tick: Callable[[int], None] | None = None) -> RoomSnapshot:
        room = self._require_host_room()
        try:
            await self.countdown_broadcaster.run(room.id, on_tick=on_tick)
        except Exception as exc:
            logger.warning("countdown_broadcast_failed", room_id=room.id, exc_info=exc)
        return await self.start_game()

    async def start_game(self) -> RoomSnapshot:
        room = self._require_host_room()
        if not self.questions:
            raise EmptyQuestionSetError(room.id)
        try:
            updated = await self._mutations.start_game(room.id)
        except RoomMutationError as exc:
            logger.warning("server_timestamp_unavailable", action="start_game", room_id=room.id, exc_info=exc)
            updated = await self._store.update_room(
                room.id,
                status=ROOM_STATUS_ACTIVE,
                current_question_index=0,
                question_started_at=self._wall_clock(),
            )
        return self._apply_host_update(room, updated, action="start_game")

    async def next_question(self) -> RoomSnapshot:
        room = self._require_host_room()
        next_index = room.current_question_index + 1
        if next_index >= len(self.questions):
            return await self.end_game()
        try:
            updated = await self._mutations.advance_question(room.id, next_index)
        except RoomMutationError as exc:
            logger.warning("server_timestamp_unavailable", action="next_question", room_id=room.id, exc_info=exc)
            updated = await self._store.update_room(
                room.id,
                current_question_index=next_index,
                question_started_at=self._wall_clock(),
            )
        return self._apply_host_update(room, updated, action="next_question")

    async def end_game(self) -> RoomSnapshot:
        room = self._require_host_room()
        try:
            updated = await self._mutations.finish_game(room.id)
        except RoomMutationError as exc:
            logger.warning("server_finish_unavailable", room_id=room.id, exc_info=exc)
            updated = await self._store.update_room(
                room.id,
                status=ROOM_STATUS_FINISHED,
                question_started_at=None,
            )
        return self._apply_host_update(room, updated, action="end_game")

    def stop_timer(self) -> None:
        self.machine.stop_timer()

    async def submit_answer(self, option_id: str) -> AnswerSubmission | None:
        room = self.room
        question = self.current_question
        if room is None or question is None or self.participant_id is None:
            return None
        if self.machine.phase is not GamePhase.PLAYING or self.machine.question.has_answered:
            return None
        if self.machine.question.question_id != question.id:
            return None

        key = self.machine.current_key
        response_time_ms = self.machine.countdown.elapsed_ms()
        try:
            submission = await self.pipeline.submit(
                room=room,
                participant_id=self.participant_id,
                question=question,
                selected_option_id=option_id,
                response_time_ms=response_time_ms,
            )
        except StoreUnavailableError as exc:
            self.last_error = "answer_not_saved"
            logger.warning("answer_submit_failed", room_id=room.id, question_id=question.id, exc_info=exc)
            return None
        if submission is None:
            return None

        if self.machine.current_key == key:
            self.machine.mark_answered(
                selected_option_id=option_id,
                is_correct=submission.answer.is_correct,
                breakdown=submission.breakdown,
            )
        await self._refresh_answers_count()
        return submission

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        for task in list(self._background):
            task.cancel()
        await asyncio.gather(*self._background, return_exceptions=True)
        self._background.clear()
        if self._countdown_listener is not None:
            await self._countdown_listener.aclose()
            self._countdown_listener = None
        await self.machine.aclose()
        await self.synchronizer.aclose()
        logger.info("live_session_closed", room_code=self.room_code, participant_id=self.participant_id)
        clear_live_context()

    async def _load_questions(self, room: RoomSnapshot) -> list[Question]:
        if not room.question_ids:
            return []
        fetched = {q.id: q for q in await self._question_bank.get_questions(room.question_ids)}
        return [fetched[qid] for qid in room.question_ids if qid in fetched]

    def _apply_host_update(self, previous: RoomSnapshot, updated: RoomSnapshot | None, *, action: str) -> RoomSnapshot:
        if updated is None:
            raise RoomNotFoundError(previous.id)
        logger.info(
            "live_host_action",
            action=action,
            room_id=updated.id,
            status=updated.status,
            question_index=updated.current_question_index,
        )
        self.synchronizer.apply_room(updated)
        return updated

    def _require_room(self) -> RoomSnapshot:
        room = self.room
        if room is None:
            raise RuntimeError("session has not entered a room")
        return room

    def _require_host_room(self) -> RoomSnapshot:
        if not self.is_host:
            raise NotHostError(self.room_code)
        return self._require_room()

    def _on_room(self, room: RoomSnapshot) -> None:
        # Until questions are loaded enter() replays the latest room itself.
        if not self.questions:
            return
        self.machine.observe_room(room)

    def _on_answers(self, question_id: str | None, count: int) -> None:
        self.machine.observe_answers(
            question_id=question_id,
            answers_count=count,
            participant_count=self.synchronizer.participant_count,
        )

    def _on_participants(self, participants: list[ParticipantSnapshot]) -> None:
        room = self.room
        if room is None:
            return
        self.machine.observe_answers(
            question_id=self.synchronizer.answers_question_id,
            answers_count=self.synchronizer.answers_count,
            participant_count=len(participants),
        )

    def _on_phase_change(self, change: PhaseChange) -> None:
        if change.current is not GamePhase.FEEDBACK:
            return
        if change.reason not in (REASON_EXPIRED, REASON_CLOCK_ERROR):
            return
        room = self.room
        question = self.current_question
        if room is None or question is None or self.participant_id is None:
            return
        if self.machine.question.has_answered:
            return
        self._spawn(self._record_timeout(room, question, self.machine.current_key))

    async def _record_timeout(self, room: RoomSnapshot, question: Question, key: Any) -> None:
        assert self.participant_id is not None
        try:
            submission = await self.pipeline.record_timeout(
                room=room,
                participant_id=self.participant_id,
                question=question,
            )
        except StoreUnavailableError as exc:
            logger.warning("answer_timeout_record_failed", room_id=room.id, question_id=question.id, exc_info=exc)
            return
        if submission is not None and self.machine.current_key == key:
            self.machine.mark_answered(selected_option_id=None, is_correct=False, breakdown=None)
        await self._refresh_answers_count()

    async def _refresh_answers_count(self) -> None:
        try:
            await self.synchronizer.refresh_answers_count()
        except StoreUnavailableError as exc:
            logger.warning("answers_count_refresh_failed", room_code=self.room_code, exc_info=exc)

    async def _repair_scores(self) -> None:
        await self.pipeline.repair_pending()

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        if self._closed:
            coro.close()
            return
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
