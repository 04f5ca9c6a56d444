from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any

import structlog
from redis.asyncio import Redis
from redis.asyncio.client import PubSub
from redis.exceptions import RedisError

from app.game.live.errors import StoreUnavailableError
from app.game.live.types import ChangeEvent

logger = structlog.get_logger(__name__)

CHANGE_CHANNEL_PREFIX = "live:changes"
BROADCAST_CHANNEL_PREFIX = "live:broadcast"


def change_channel(table: str, room_id: str) -> str:
    return f"{CHANGE_CHANNEL_PREFIX}:{table}:{room_id}"


def broadcast_channel(topic: str) -> str:
    return f"{BROADCAST_CHANNEL_PREFIX}:{topic}"


def _dumps(payload: dict[str, Any]) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


def encode_change(event: ChangeEvent) -> str:
    return _dumps(
        {
            "table": event.table,
            "event_type": event.event_type,
            "new": event.new,
            "old": event.old,
        }
    )


def decode_change(raw: str | bytes) -> ChangeEvent:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    data = json.loads(raw)
    return ChangeEvent(
        table=str(data["table"]),
        event_type=str(data["event_type"]),
        new=data.get("new"),
        old=data.get("old"),
    )


def encode_broadcast(event: str, payload: dict[str, Any]) -> str:
    return _dumps({"event": event, "payload": payload})


def decode_broadcast(raw: str | bytes) -> tuple[str, dict[str, Any]]:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    data = json.loads(raw)
    return str(data["event"]), dict(data.get("payload") or {})


class RedisChangeSubscription:
    """Row change events for one table of one room, read from a Redis channel."""

    def __init__(self, redis: Redis, channel: str) -> None:
        self._redis = redis
        self._channel = channel
        self._pubsub = redis.pubsub(ignore_subscribe_messages=True)
        self._closed = False

    async def open(self) -> None:
        await self._pubsub.subscribe(self._channel)

    def __aiter__(self) -> AsyncIterator[ChangeEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ChangeEvent]:
        async for message in self._pubsub.listen():
            if self._closed:
                return
            if message.get("type") != "message":
                continue
            try:
                yield decode_change(message["data"])
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("live_change_decode_failed", channel=self._channel, exc_info=exc)

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._pubsub.unsubscribe(self._channel)
        finally:
            await self._pubsub.aclose()


class RedisChangeFeed:
    def __init__(self, redis: Redis) -> None:
        self._redis = redis

    async def subscribe(self, table: str, *, room_id: str) -> RedisChangeSubscription:
        subscription = RedisChangeSubscription(self._redis, change_channel(table, room_id))
        try:
            await subscription.open()
        except RedisError as exc:
            await subscription.aclose()
            raise StoreUnavailableError(f"change feed unavailable for {table}") from exc
        return subscription


class RedisChangePublisher:
    """Announces committed row changes so subscribed clients hear about them early."""

    def __init__(self, redis: Redis) -> None:
        self._redis = redis

    async def publish(self, event: ChangeEvent, *, room_id: str) -> None:
        try:
            await self._redis.publish(change_channel(event.table, room_id), encode_change(event))
        except RedisError as exc:
            # Subscribers fall back to polling.
            logger.warning(
                "live_change_publish_failed",
                room_id=room_id,
                table=event.table,
                event_type=event.event_type,
                exc_info=exc,
            )


class RedisBroadcastChannel:
    def __init__(self, redis: Redis, topic: str) -> None:
        self._redis = redis
        self._topic = topic
        self._channel = broadcast_channel(topic)
        self._pubsub: PubSub | None = None

    async def subscribe(self) -> None:
        if self._pubsub is not None:
            return
        pubsub = self._redis.pubsub(ignore_subscribe_messages=True)
        await pubsub.subscribe(self._channel)
        self._pubsub = pubsub

    async def publish(self, event: str, payload: dict[str, Any]) -> None:
        await self._redis.publish(self._channel, encode_broadcast(event, payload))

    async def listen(self, event: str) -> AsyncIterator[dict[str, Any]]:
        if self._pubsub is None:
            await self.subscribe()
        assert self._pubsub is not None
        async for message in self._pubsub.listen():
            if message.get("type") != "message":
                continue
            try:
                name, payload = decode_broadcast(message["data"])
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("live_broadcast_decode_failed", topic=self._topic, exc_info=exc)
                continue
            if name == event:
                yield payload

    async def aclose(self) -> None:
        pubsub, self._pubsub = self._pubsub, None
        if pubsub is None:
            return
        try:
            await pubsub.unsubscribe(self._channel)
        finally:
            await pubsub.aclose()


class RedisBroadcastHub:
    def __init__(self, redis: Redis) -> None:
        self._redis = redis

    def channel(self, topic: str) -> RedisBroadcastChannel:
        return RedisBroadcastChannel(self._redis, topic)
