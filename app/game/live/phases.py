from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

import structlog

from app.game.live.clock import QuestionCountdown, parse_server_timestamp, utc_now
from app.game.live.constants import DEFAULT_TIMER_TICK_SECONDS
from app.game.live.errors import ClockParseError
from app.game.live.types import GamePhase, QuestionState, RoomSnapshot, ScoreBreakdown

logger = structlog.get_logger(__name__)

REASON_NEW_QUESTION = "new_question"
REASON_EXPIRED = "expired"
REASON_CLOCK_ERROR = "clock_error"
REASON_FULL_COVERAGE = "full_coverage"
REASON_STOPPED = "stopped"
REASON_ANSWERED = "answered"
REASON_FINISHED = "finished"

LIVE_PHASES: frozenset[GamePhase] = frozenset({GamePhase.PLAYING, GamePhase.ANSWERING})


@dataclass(frozen=True, slots=True)
class QuestionKey:
    started_at: datetime | str
    question_index: int


@dataclass(frozen=True, slots=True)
class PhaseChange:
    previous: GamePhase
    current: GamePhase
    reason: str
    question_index: int | None


def question_key(room: RoomSnapshot) -> QuestionKey | None:
    """Identity of the live question: start stamp and index together."""
    if room.question_started_at is None:
        return None
    try:
        started_at: datetime | str = parse_server_timestamp(room.question_started_at)
    except ClockParseError:
        started_at = str(room.question_started_at)
    return QuestionKey(started_at=started_at, question_index=room.current_question_index)


def is_full_coverage(answers_count: int, participant_count: int) -> bool:
    return participant_count > 0 and answers_count >= participant_count


class SessionStateMachine:
    """Phase model replicated by the host and every player from Room observations.

    lobby -> playing when an active room carries a fresh, unexpired question
    stamp; playing/answering -> feedback on countdown expiry or full answer
    coverage; feedback -> playing on the next distinct stamp; anything ->
    results once the room is finished.
    """

    def __init__(
        self,
        *,
        tick_interval: float = DEFAULT_TIMER_TICK_SECONDS,
        on_tick: Callable[[float], None] | None = None,
        wall_clock: Callable[[], datetime] = utc_now,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.countdown = QuestionCountdown(
            tick_interval=tick_interval,
            on_tick=on_tick,
            on_expired=self._handle_countdown_expired,
            wall_clock=wall_clock,
            monotonic=monotonic,
        )
        self.question = QuestionState()
        self.room: RoomSnapshot | None = None
        self._phase = GamePhase.LOBBY
        self._current_key: QuestionKey | None = None
        self._arming = False
        self._listeners: list[Callable[[PhaseChange], None]] = []

    @property
    def phase(self) -> GamePhase:
        return self._phase

    @property
    def current_key(self) -> QuestionKey | None:
        return self._current_key

    @property
    def time_left(self) -> int:
        if self._phase not in LIVE_PHASES:
            return 0
        return self.countdown.seconds_left()

    @property
    def can_reveal_answer(self) -> bool:
        if self._phase in (GamePhase.FEEDBACK, GamePhase.RESULTS):
            return True
        return self.question.has_answered

    def add_listener(self, listener: Callable[[PhaseChange], None]) -> None:
        self._listeners.append(listener)

    def observe_room(self, room: RoomSnapshot) -> bool:
        """Applies one Room observation; returns True when the phase moved.

        Safe to call repeatedly with the same room: an unchanged question key
        is a no-op.
        """
        self.room = room
        if self._phase is GamePhase.RESULTS:
            return False

        if room.is_finished:
            self.countdown.stop()
            self._set_phase(GamePhase.RESULTS, REASON_FINISHED)
            return True

        if not room.is_active:
            return False

        key = question_key(room)
        if key is None or key == self._current_key:
            return False

        self._current_key = key
        self.question = QuestionState(question_id=room.current_question_id)
        self._arming = True
        try:
            self.countdown.start(room.question_started_at, room.settings.time_limit_seconds)
        except ClockParseError:
            logger.warning(
                "question_start_unparsable",
                room_id=room.id,
                question_index=room.current_question_index,
                question_started_at=str(room.question_started_at),
            )
            self._set_phase(GamePhase.FEEDBACK, REASON_CLOCK_ERROR, force=True)
            return True
        finally:
            self._arming = False

        if self.countdown.expired:
            return True

        self._set_phase(GamePhase.PLAYING, REASON_NEW_QUESTION, force=True)
        return True

    def observe_answers(self, *, question_id: str | None, answers_count: int, participant_count: int) -> bool:
        if question_id is None or question_id != self.question.question_id:
            return False
        self.question.answers_count = answers_count
        if self._phase not in LIVE_PHASES:
            return False
        if not is_full_coverage(answers_count, participant_count):
            return False
        self.countdown.stop()
        self._set_phase(GamePhase.FEEDBACK, REASON_FULL_COVERAGE)
        return True

    def mark_answered(
        self,
        *,
        selected_option_id: str | None,
        is_correct: bool,
        breakdown: ScoreBreakdown | None,
    ) -> None:
        self.question.selected_option_id = selected_option_id
        self.question.is_correct = is_correct
        self.question.breakdown = breakdown
        self.question.has_answered = True
        self.question.timed_out = selected_option_id is None
        if self._phase is GamePhase.PLAYING:
            self._set_phase(GamePhase.ANSWERING, REASON_ANSWERED)

    def stop_timer(self) -> None:
        self.countdown.stop()
        if self._phase in LIVE_PHASES:
            self._set_phase(GamePhase.FEEDBACK, REASON_STOPPED)

    def finish(self) -> None:
        self.countdown.stop()
        self._set_phase(GamePhase.RESULTS, REASON_FINISHED)

    async def aclose(self) -> None:
        await self.countdown.aclose()

    def _handle_countdown_expired(self) -> None:
        if self._arming:
            self._set_phase(GamePhase.FEEDBACK, REASON_EXPIRED, force=True)
        elif self._phase in LIVE_PHASES:
            self._set_phase(GamePhase.FEEDBACK, REASON_EXPIRED)

    def _set_phase(self, phase: GamePhase, reason: str, *, force: bool = False) -> None:
        previous = self._phase
        if previous is phase and not force:
            return
        self._phase = phase
        change = PhaseChange(
            previous=previous,
            current=phase,
            reason=reason,
            question_index=(self._current_key.question_index if self._current_key else None),
        )
        logger.info(
            "live_phase_changed",
            previous=previous.value,
            current=phase.value,
            reason=reason,
            question_index=change.question_index,
        )
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.exception("live_phase_listener_failed", reason=reason)
