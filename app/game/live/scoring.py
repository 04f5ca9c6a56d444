from __future__ import annotations

import math

from app.game.live.constants import (
    BASE_SCORES,
    MAX_SPEED_BONUS_RATIO,
    MAX_STREAK_BONUS_RATIO,
    STREAK_BONUS_PER_ANSWER,
)
from app.game.live.types import ScoreBreakdown


def round_half_up(value: float) -> int:
    """Rounds .5 toward +infinity, matching the scores already stored by web clients."""
    return int(math.floor(value + 0.5))


def base_score(difficulty: str) -> int:
    try:
        return BASE_SCORES[difficulty]
    except KeyError:
        raise ValueError(f"unknown difficulty: {difficulty!r}") from None


def speed_multiplier(response_time_ms: float, time_limit_ms: float) -> float:
    if response_time_ms < 0 or time_limit_ms <= 0:
        return 1.0
    used_ratio = min(response_time_ms / time_limit_ms, 1.0)
    return 1.0 + MAX_SPEED_BONUS_RATIO * (1.0 - used_ratio)


def streak_multiplier(streak: int) -> float:
    return 1.0 + min(max(streak, 0) * STREAK_BONUS_PER_ANSWER, MAX_STREAK_BONUS_RATIO)


def calculate_score(
    *,
    difficulty: str,
    response_time_ms: float,
    time_limit_ms: float,
    streak: int,
) -> ScoreBreakdown:
    """Scores a correct answer.

    `streak` is the run of correct answers before this one. The bonus fields
    are rounded independently, so base + speed_bonus + streak_bonus may be off
    by one from total_score.
    """
    base = base_score(difficulty)
    speed = speed_multiplier(response_time_ms, time_limit_ms)
    streak_mult = streak_multiplier(streak)
    return ScoreBreakdown(
        base_score=base,
        speed_bonus=round_half_up(base * (speed - 1)),
        streak_bonus=round_half_up(base * speed * (streak_mult - 1)),
        total_score=round_half_up(base * speed * streak_mult),
        streak_count_used=streak,
    )


def next_streak(current_streak: int, *, is_correct: bool) -> int:
    return current_streak + 1 if is_correct else 0


def trailing_streak(correctness: list[bool]) -> int:
    """Counts consecutive correct answers at the end of an ordered answer log."""
    streak = 0
    for is_correct in reversed(correctness):
        if not is_correct:
            break
        streak += 1
    return streak
