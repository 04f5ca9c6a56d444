from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from app.game.live.constants import (
    ALLOWED_DIFFICULTY_FILTERS,
    ALLOWED_MODES,
    ALLOWED_SCORE_REVEALS,
    ALLOWED_TIME_LIMITS,
    ROOM_STATUS_ACTIVE,
    ROOM_STATUS_FINISHED,
)
from app.game.live.errors import InvalidRoomSettingsError


class GamePhase(str, Enum):
    LOBBY = "lobby"
    PLAYING = "playing"
    ANSWERING = "answering"
    FEEDBACK = "feedback"
    RESULTS = "results"


def _iso(value: datetime | str | None) -> str | None:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


@dataclass(frozen=True, slots=True)
class RoomSettings:
    time_limit_seconds: int = 20
    mode: str = "solo"
    difficulty: str = "mixed"
    sudden_death: bool = False
    score_reveal: str = "each"

    def __post_init__(self) -> None:
        if self.time_limit_seconds not in ALLOWED_TIME_LIMITS:
            raise InvalidRoomSettingsError(f"time_limit_seconds={self.time_limit_seconds}")
        if self.mode not in ALLOWED_MODES:
            raise InvalidRoomSettingsError(f"mode={self.mode}")
        if self.difficulty not in ALLOWED_DIFFICULTY_FILTERS:
            raise InvalidRoomSettingsError(f"difficulty={self.difficulty}")
        if self.score_reveal not in ALLOWED_SCORE_REVEALS:
            raise InvalidRoomSettingsError(f"score_reveal={self.score_reveal}")

    @property
    def time_limit_ms(self) -> int:
        return self.time_limit_seconds * 1000

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> RoomSettings:
        data = data or {}
        # Rows written by older clients carry "time_limit" instead.
        time_limit = data.get("time_limit_seconds", data.get("time_limit", 20))
        return cls(
            time_limit_seconds=int(time_limit),
            mode=str(data.get("mode", "solo")),
            difficulty=str(data.get("difficulty", "mixed")),
            sudden_death=bool(data.get("sudden_death", False)),
            score_reveal=str(data.get("score_reveal", "each")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "time_limit_seconds": self.time_limit_seconds,
            "mode": self.mode,
            "difficulty": self.difficulty,
            "sudden_death": self.sudden_death,
            "score_reveal": self.score_reveal,
        }


@dataclass(frozen=True, slots=True)
class RoomSnapshot:
    id: str
    code: str
    status: str
    current_question_index: int
    question_ids: tuple[str, ...]
    settings: RoomSettings
    question_started_at: datetime | str | None = None
    host_id: str | None = None
    created_at: datetime | str | None = None

    @property
    def is_active(self) -> bool:
        return self.status == ROOM_STATUS_ACTIVE

    @property
    def is_finished(self) -> bool:
        return self.status == ROOM_STATUS_FINISHED

    @property
    def current_question_id(self) -> str | None:
        if 0 <= self.current_question_index < len(self.question_ids):
            return self.question_ids[self.current_question_index]
        return None

    @classmethod
    def from_mapping(cls, row: Mapping[str, Any]) -> RoomSnapshot:
        return cls(
            id=str(row["id"]),
            code=str(row["code"]),
            status=str(row["status"]),
            current_question_index=int(row.get("current_question_index") or 0),
            question_ids=tuple(str(qid) for qid in row.get("question_ids") or ()),
            settings=RoomSettings.from_mapping(row.get("settings")),
            question_started_at=row.get("question_started_at"),
            host_id=(str(row["host_id"]) if row.get("host_id") is not None else None),
            created_at=row.get("created_at"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "code": self.code,
            "status": self.status,
            "current_question_index": self.current_question_index,
            "question_ids": list(self.question_ids),
            "settings": self.settings.to_dict(),
            "question_started_at": _iso(self.question_started_at),
            "host_id": self.host_id,
            "created_at": _iso(self.created_at),
        }


@dataclass(frozen=True, slots=True)
class ParticipantSnapshot:
    id: str
    room_id: str
    nickname: str
    player_id: str | None = None
    score: int = 0
    streak: int = 0
    team: str | None = None
    avatar: str | None = None
    last_active: datetime | str | None = None

    @classmethod
    def from_mapping(cls, row: Mapping[str, Any]) -> ParticipantSnapshot:
        return cls(
            id=str(row["id"]),
            room_id=str(row["room_id"]),
            nickname=str(row.get("nickname") or ""),
            player_id=(str(row["player_id"]) if row.get("player_id") is not None else None),
            score=int(row.get("score") or 0),
            streak=int(row.get("streak") or 0),
            team=row.get("team"),
            avatar=row.get("avatar"),
            last_active=row.get("last_active"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "room_id": self.room_id,
            "nickname": self.nickname,
            "player_id": self.player_id,
            "score": self.score,
            "streak": self.streak,
            "team": self.team,
            "avatar": self.avatar,
            "last_active": _iso(self.last_active),
        }


@dataclass(frozen=True, slots=True)
class QuestionOption:
    id: str
    text: str


@dataclass(frozen=True, slots=True)
class Question:
    id: str
    text: str
    options: tuple[QuestionOption, ...]
    correct_option_id: str
    difficulty: str
    category: str | None = None
    source_info: str | None = None

    @classmethod
    def from_mapping(cls, row: Mapping[str, Any]) -> Question:
        return cls(
            id=str(row["id"]),
            text=str(row["text"]),
            options=tuple(
                QuestionOption(id=str(option["id"]), text=str(option["text"]))
                for option in row.get("options") or ()
            ),
            correct_option_id=str(row["correct_option_id"]),
            difficulty=str(row["difficulty"]),
            category=row.get("category"),
            source_info=row.get("source_info"),
        )


@dataclass(frozen=True, slots=True)
class AnswerRecord:
    room_id: str
    participant_id: str
    question_id: str
    selected_option_id: str | None
    is_correct: bool
    response_time_ms: int
    points_earned: int
    id: str | None = None
    responded_at: datetime | None = None

    @property
    def timed_out(self) -> bool:
        return self.selected_option_id is None


@dataclass(frozen=True, slots=True)
class ScoreBreakdown:
    base_score: int
    speed_bonus: int
    streak_bonus: int
    total_score: int
    streak_count_used: int


@dataclass(frozen=True, slots=True)
class AnswerSubmission:
    answer: AnswerRecord
    breakdown: ScoreBreakdown | None
    new_score: int
    new_streak: int
    score_persisted: bool = True


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    table: str
    event_type: str
    new: dict[str, Any] | None = None
    old: dict[str, Any] | None = None


@dataclass(slots=True)
class QuestionState:
    """Per-question local state, reset whenever a new question goes live."""

    question_id: str | None = None
    selected_option_id: str | None = None
    is_correct: bool | None = None
    breakdown: ScoreBreakdown | None = None
    answers_count: int = 0
    has_answered: bool = False
    timed_out: bool = False
