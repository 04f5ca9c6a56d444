from __future__ import annotations

import structlog

from app.game.live.errors import StoreUnavailableError
from app.game.live.phases import is_full_coverage
from app.game.live.ports import RoomStore
from app.game.live.scoring import calculate_score, next_streak, trailing_streak
from app.game.live.types import AnswerRecord, AnswerSubmission, Question, RoomSnapshot

logger = structlog.get_logger(__name__)

SubmissionKey = tuple[str, str, str]


async def check_full_coverage(
    store: RoomStore,
    *,
    room_id: str,
    question_id: str,
    participant_count: int,
) -> bool:
    if participant_count <= 0:
        return False
    answers_count = await store.count_answers(room_id=room_id, question_id=question_id)
    return is_full_coverage(answers_count, participant_count)


class AnswerSubmissionPipeline:
    """Records at most one answer per (room, participant, question) from this client.

    The claim on a question is taken before the first await, so a double click
    that schedules two submissions back to back only writes once. Score and
    streak are derived from a participant row read right before the write.
    """

    def __init__(self, *, store: RoomStore) -> None:
        self._store = store
        self._submitted: dict[SubmissionKey, AnswerRecord | None] = {}
        self._pending_repairs: dict[str, str] = {}

    @property
    def pending_repairs(self) -> dict[str, str]:
        return dict(self._pending_repairs)

    def has_submitted(self, *, room_id: str, participant_id: str, question_id: str) -> bool:
        return (room_id, participant_id, question_id) in self._submitted

    async def submit(
        self,
        *,
        room: RoomSnapshot,
        participant_id: str,
        question: Question,
        selected_option_id: str | None,
        response_time_ms: int,
    ) -> AnswerSubmission | None:
        key = (room.id, participant_id, question.id)
        if key in self._submitted:
            logger.info(
                "answer_submission_duplicate_ignored",
                room_id=room.id,
                participant_id=participant_id,
                question_id=question.id,
            )
            return None
        self._submitted[key] = None

        try:
            participant = await self._store.get_participant(participant_id)
        except Exception:
            del self._submitted[key]
            raise
        if participant is None or participant.room_id != room.id:
            del self._submitted[key]
            logger.warning("answer_submission_participant_missing", room_id=room.id, participant_id=participant_id)
            return None

        is_correct = selected_option_id is not None and selected_option_id == question.correct_option_id
        breakdown = None
        points_earned = 0
        if is_correct:
            breakdown = calculate_score(
                difficulty=question.difficulty,
                response_time_ms=response_time_ms,
                time_limit_ms=room.settings.time_limit_ms,
                streak=participant.streak,
            )
            points_earned = breakdown.total_score
        new_streak = next_streak(participant.streak, is_correct=is_correct)
        new_score = participant.score + points_earned

        try:
            stored = await self._store.insert_answer(
                AnswerRecord(
                    room_id=room.id,
                    participant_id=participant.id,
                    question_id=question.id,
                    selected_option_id=selected_option_id,
                    is_correct=is_correct,
                    response_time_ms=max(0, int(response_time_ms)),
                    points_earned=points_earned,
                )
            )
        except Exception:
            del self._submitted[key]
            raise
        self._submitted[key] = stored

        score_persisted = True
        try:
            await self._store.update_participant_score(participant.id, score=new_score, streak=new_streak)
        except StoreUnavailableError as exc:
            score_persisted = False
            self._pending_repairs[participant.id] = room.id
            logger.warning(
                "answer_score_update_failed",
                room_id=room.id,
                participant_id=participant.id,
                question_id=question.id,
                exc_info=exc,
            )

        logger.info(
            "answer_submitted",
            room_id=room.id,
            participant_id=participant.id,
            question_id=question.id,
            is_correct=is_correct,
            timed_out=selected_option_id is None,
            response_time_ms=stored.response_time_ms,
            points_earned=points_earned,
            streak=new_streak,
        )
        return AnswerSubmission(
            answer=stored,
            breakdown=breakdown,
            new_score=new_score,
            new_streak=new_streak,
            score_persisted=score_persisted,
        )

    async def record_timeout(
        self,
        *,
        room: RoomSnapshot,
        participant_id: str,
        question: Question,
    ) -> AnswerSubmission | None:
        key = (room.id, participant_id, question.id)
        if key in self._submitted:
            return None
        # A rejoining client has no local record of answers sent before it left.
        if await self._store.has_answer(room_id=room.id, participant_id=participant_id, question_id=question.id):
            self._submitted[key] = None
            return None
        return await self.submit(
            room=room,
            participant_id=participant_id,
            question=question,
            selected_option_id=None,
            response_time_ms=room.settings.time_limit_ms,
        )

    async def repair_pending(self) -> int:
        """Rewrites score and streak from the answer log for participants whose update failed."""
        repaired = 0
        for participant_id, room_id in list(self._pending_repairs.items()):
            try:
                answers = await self._store.list_participant_answers(room_id=room_id, participant_id=participant_id)
                score = sum(answer.points_earned for answer in answers)
                streak = trailing_streak([answer.is_correct for answer in answers])
                await self._store.update_participant_score(participant_id, score=score, streak=streak)
            except StoreUnavailableError as exc:
                logger.warning("answer_score_repair_failed", room_id=room_id, participant_id=participant_id, exc_info=exc)
                continue
            self._pending_repairs.pop(participant_id, None)
            repaired += 1
            logger.info("answer_score_repaired", room_id=room_id, participant_id=participant_id, score=score, streak=streak)
        return repaired
