from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from app.game.live.constants import (
    COUNTDOWN_EVENT,
    COUNTDOWN_GRACE_SECONDS,
    COUNTDOWN_REDUNDANT_SENDS,
    COUNTDOWN_SEND_STAGGER_SECONDS,
    COUNTDOWN_START,
    COUNTDOWN_STEP_SECONDS,
    countdown_topic,
)
from app.game.live.ports import BroadcastChannel, BroadcastHub

logger = structlog.get_logger(__name__)


class HostCountdownBroadcaster:
    """Sends the cosmetic 3-2-1-GO to players over a lossy broadcast channel.

    Every value goes out several times; receivers drop repeats. Nothing
    waits for players to acknowledge, and the real question start never
    depends on this having been delivered.
    """

    def __init__(
        self,
        hub: BroadcastHub,
        *,
        start: int = COUNTDOWN_START,
        grace_period: float = COUNTDOWN_GRACE_SECONDS,
        redundant_sends: int = COUNTDOWN_REDUNDANT_SENDS,
        send_stagger: float = COUNTDOWN_SEND_STAGGER_SECONDS,
        step_seconds: float = COUNTDOWN_STEP_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if start < 0:
            raise ValueError("start must be >= 0")
        if redundant_sends < 1:
            raise ValueError("redundant_sends must be >= 1")
        self._hub = hub
        self._start = start
        self._grace_period = grace_period
        self._redundant_sends = redundant_sends
        self._send_stagger = send_stagger
        self._step_seconds = step_seconds
        self._sleep = sleep

    async def run(self, room_id: str, *, on_tick: Callable[[int], None] | None = None) -> None:
        channel = self._hub.channel(countdown_topic(room_id))
        try:
            await channel.subscribe()
            # Players subscribe from the lobby; give late ones a moment.
            await self._sleep(self._grace_period)
            for value in range(self._start, -1, -1):
                if on_tick is not None:
                    on_tick(value)
                await self._send(channel, room_id, value)
                if value > 0:
                    await self._sleep(self._step_seconds)
        finally:
            await channel.aclose()

    async def _send(self, channel: BroadcastChannel, room_id: str, value: int) -> None:
        for attempt in range(self._redundant_sends):
            try:
                await channel.publish(COUNTDOWN_EVENT, {"count": value})
            except Exception as exc:
                logger.warning(
                    "countdown_broadcast_send_failed",
                    room_id=room_id,
                    count=value,
                    attempt=attempt,
                    exc_info=exc,
                )
            if attempt < self._redundant_sends - 1:
                await self._sleep(self._send_stagger)


class CountdownListener:
    """Player side of the countdown; reports each distinct value once."""

    def __init__(self, hub: BroadcastHub, *, on_value: Callable[[int], None]) -> None:
        self._hub = hub
        self._on_value = on_value
        self._channel: BroadcastChannel | None = None
        self._task: asyncio.Task[None] | None = None
        self.last_value: int | None = None

    def receive(self, payload: dict[str, Any]) -> bool:
        try:
            value = int(payload["count"])
        except (KeyError, TypeError, ValueError):
            logger.warning("countdown_payload_invalid", payload=payload)
            return False
        if value == self.last_value:
            return False
        self.last_value = value
        self._on_value(value)
        return True

    async def start(self, room_id: str) -> None:
        if self._channel is not None:
            return
        channel = self._hub.channel(countdown_topic(room_id))
        await channel.subscribe()
        self._channel = channel
        self._task = asyncio.get_running_loop().create_task(self._consume(channel))

    async def aclose(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        channel, self._channel = self._channel, None
        if channel is not None:
            await channel.aclose()

    async def _consume(self, channel: BroadcastChannel) -> None:
        try:
            async for payload in channel.listen(COUNTDOWN_EVENT):
                self.receive(payload)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("countdown_listener_failed", exc_info=exc)
