from __future__ import annotations

ROOM_CODE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
ROOM_CODE_LENGTH = 6
ROOM_CODE_ATTEMPTS = 5

ROOM_STATUS_WAITING = "waiting"
ROOM_STATUS_ACTIVE = "active"
ROOM_STATUS_FINISHED = "finished"
ROOM_STATUSES: frozenset[str] = frozenset(
    {ROOM_STATUS_WAITING, ROOM_STATUS_ACTIVE, ROOM_STATUS_FINISHED}
)

ALLOWED_TIME_LIMITS: frozenset[int] = frozenset({10, 20, 30})
ALLOWED_MODES: frozenset[str] = frozenset({"solo", "teams"})
ALLOWED_DIFFICULTY_FILTERS: frozenset[str] = frozenset({"easy", "medium", "hard", "mixed"})
ALLOWED_SCORE_REVEALS: frozenset[str] = frozenset({"each", "end"})
ALLOWED_TEAMS: frozenset[str] = frozenset({"red", "blue"})

BASE_SCORES: dict[str, int] = {
    "easy": 100,
    "medium": 200,
    "hard": 300,
}
MAX_SPEED_BONUS_RATIO = 0.5
STREAK_BONUS_PER_ANSWER = 0.1
MAX_STREAK_BONUS_RATIO = 0.5

DEFAULT_TIMER_TICK_SECONDS = 0.1
MAX_TIMER_TICK_SECONDS = 0.2
DEFAULT_POLL_INTERVAL_SECONDS = 2.0

COUNTDOWN_START = 3
COUNTDOWN_GRACE_SECONDS = 1.5
COUNTDOWN_REDUNDANT_SENDS = 3
COUNTDOWN_SEND_STAGGER_SECONDS = 0.05
COUNTDOWN_STEP_SECONDS = 1.0
COUNTDOWN_EVENT = "countdown"

TABLE_ROOMS = "rooms"
TABLE_PARTICIPANTS = "participants"
TABLE_ANSWERS = "answers"

EVENT_INSERT = "insert"
EVENT_UPDATE = "update"
EVENT_DELETE = "delete"


def countdown_topic(room_id: str) -> str:
    return f"countdown-{room_id}"
