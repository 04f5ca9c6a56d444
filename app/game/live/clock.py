from __future__ import annotations

import asyncio
import math
import re
import time
from collections.abc import Callable
from contextlib import suppress
from datetime import datetime, timezone

import structlog

from app.game.live.constants import DEFAULT_TIMER_TICK_SECONDS, MAX_TIMER_TICK_SECONDS
from app.game.live.errors import ClockParseError

logger = structlog.get_logger(__name__)

UTC = timezone.utc
_HOUR_ONLY_OFFSET_RE = re.compile(r"[+-]\d{2}$")


def utc_now() -> datetime:
    return datetime.now(UTC)


def normalize_server_timestamp(raw: str) -> str:
    """Turns Postgres text timestamps ("2025-12-05 09:53:08.134406+00") into strict ISO 8601."""
    value = raw.strip()
    if not value:
        raise ClockParseError("empty timestamp")
    value = value.replace(" ", "T", 1)
    if value[-1] in "Zz":
        return value[:-1] + "+00:00"
    date_part, sep, time_part = value.partition("T")
    if sep and _HOUR_ONLY_OFFSET_RE.search(time_part):
        return f"{date_part}T{time_part}:00"
    return value


def parse_server_timestamp(value: datetime | str) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(normalize_server_timestamp(value))
        except ValueError as exc:
            raise ClockParseError(f"unparsable server timestamp: {value!r}") from exc
    else:
        raise ClockParseError(f"unsupported server timestamp type: {type(value).__name__}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


class QuestionCountdown:
    """Local countdown anchored on a server-issued question start.

    The server timestamp is read once to learn how much of the question had
    already elapsed; from then on only the local monotonic clock is used, so
    wall-clock skew between client and server affects nothing but that first
    offset.
    """

    def __init__(
        self,
        *,
        tick_interval: float = DEFAULT_TIMER_TICK_SECONDS,
        on_tick: Callable[[float], None] | None = None,
        on_expired: Callable[[], None] | None = None,
        wall_clock: Callable[[], datetime] = utc_now,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        if tick_interval <= 0 or tick_interval > MAX_TIMER_TICK_SECONDS:
            raise ValueError(f"tick_interval must be in (0, {MAX_TIMER_TICK_SECONDS}]")
        self._tick_interval = tick_interval
        self._on_tick = on_tick
        self._on_expired = on_expired
        self._wall_clock = wall_clock
        self._monotonic = monotonic

        self._task: asyncio.Task[None] | None = None
        self._armed = False
        self._expired = False
        self._duration = 0.0
        self._server_elapsed = 0.0
        self._local_reference: float | None = None
        self.server_started_at: datetime | None = None

    @property
    def expired(self) -> bool:
        return self._expired

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def duration_seconds(self) -> float:
        return self._duration

    def remaining(self) -> float:
        if self._local_reference is None or self._expired:
            return 0.0
        local_elapsed = self._monotonic() - self._local_reference
        return max(0.0, self._duration - self._server_elapsed - local_elapsed)

    def seconds_left(self) -> int:
        return math.ceil(self.remaining())

    def reconciled_start(self) -> float | None:
        """Question start expressed on the local monotonic clock."""
        if self._local_reference is None:
            return None
        return self._local_reference - self._server_elapsed

    def elapsed_ms(self) -> int:
        start = self.reconciled_start()
        if start is None:
            return 0
        return max(0, int((self._monotonic() - start) * 1000))

    def start(self, server_started_at: datetime | str, duration_seconds: int) -> float:
        """Starts counting down and returns the seconds remaining.

        Any previous countdown is cancelled first. Raises ClockParseError for a
        malformed timestamp, in which case nothing is started.
        """
        self.stop()
        if duration_seconds <= 0:
            raise ValueError("duration_seconds must be positive")

        started_at = parse_server_timestamp(server_started_at)
        server_elapsed = max(0.0, (self._wall_clock() - started_at).total_seconds())

        self.server_started_at = started_at
        self._duration = float(duration_seconds)
        self._server_elapsed = server_elapsed
        self._local_reference = self._monotonic()
        self._expired = False

        if server_elapsed >= self._duration:
            logger.info(
                "question_countdown_already_expired",
                server_elapsed=round(server_elapsed, 3),
                duration_seconds=duration_seconds,
            )
            self._expired = True
            self._emit_tick(0.0)
            self._emit_expired()
            return 0.0

        remaining = self.remaining()
        self._armed = True
        self._emit_tick(remaining)
        self._task = asyncio.get_running_loop().create_task(self._run())
        return remaining

    def check_expiry(self) -> bool:
        """Signals expiry if the deadline has passed; repeated calls are no-ops."""
        if not self._armed:
            return self._expired
        if self.remaining() > 0:
            return False
        self._finish()
        return True

    def stop(self) -> None:
        """Stops ticking without signaling expiry."""
        self._armed = False
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def aclose(self) -> None:
        task = self._task
        self.stop()
        if task is not None:
            with suppress(asyncio.CancelledError):
                await task

    async def _run(self) -> None:
        while self._armed:
            await asyncio.sleep(self._tick_interval)
            if not self._armed:
                return
            remaining = self.remaining()
            self._emit_tick(remaining)
            if remaining <= 0:
                self._finish()
                return

    def _finish(self) -> None:
        self._armed = False
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._expired = True
        self._emit_expired()

    def _emit_tick(self, remaining: float) -> None:
        if self._on_tick is None:
            return
        try:
            self._on_tick(remaining)
        except Exception:
            logger.exception("question_countdown_tick_callback_failed")

    def _emit_expired(self) -> None:
        if self._on_expired is None:
            return
        try:
            self._on_expired()
        except Exception:
            logger.exception("question_countdown_expired_callback_failed")
