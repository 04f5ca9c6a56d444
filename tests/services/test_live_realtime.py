from __future__ import annotations

import pytest

from app.game.live.types import ChangeEvent
from app.services.live_realtime import (
    broadcast_channel,
    change_channel,
    decode_broadcast,
    decode_change,
    encode_broadcast,
    encode_change,
)


def test_channels_are_scoped_per_table_and_room() -> None:
    assert change_channel("rooms", "room-1") == "live:changes:rooms:room-1"
    assert change_channel("answers", "room-1") != change_channel("answers", "room-2")
    assert broadcast_channel("countdown-room-1") == "live:broadcast:countdown-room-1"


def test_change_event_survives_the_wire() -> None:
    event = ChangeEvent(
        table="participants",
        event_type="update",
        new={"id": "p-1", "room_id": "room-1", "score": 420, "streak": 2},
    )

    decoded = decode_change(encode_change(event).encode("utf-8"))

    assert decoded == event
    assert decoded.old is None


def test_broadcast_payload_keeps_event_name() -> None:
    name, payload = decode_broadcast(encode_broadcast("countdown", {"count": 2}))

    assert name == "countdown"
    assert payload == {"count": 2}


def test_broadcast_without_payload_decodes_to_empty_dict() -> None:
    assert decode_broadcast(b'{"event":"countdown"}') == ("countdown", {})


@pytest.mark.parametrize("raw", ["not json", '{"event_type":"insert"}'])
def test_malformed_change_messages_raise(raw: str) -> None:
    with pytest.raises((ValueError, KeyError)):
        decode_change(raw)
