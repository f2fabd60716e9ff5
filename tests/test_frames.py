"""Unit tests for wire frame parsing and serialization."""

import json

import pytest
from pydantic import ValidationError

from exceptions import MalformedFrameError, UnknownFrameTypeError
from schemas.frames import (
    NewMessageFrame,
    PresenceOfflineFrame,
    ReadReceiptFrame,
    TypingStartFrame,
    error_frame,
    parse_frame,
    presence_frame,
    typing_frame,
)


def test_parse_typing_frame_without_user_id():
    """Clients send typing frames carrying only the couple id."""
    frame = parse_frame('{"type": "typing:start", "payload": {"coupleId": "c1"}, "timestamp": 5}')

    assert isinstance(frame, TypingStartFrame)
    assert frame.payload.couple_id == "c1"
    assert frame.payload.user_id is None
    assert frame.timestamp == 5


def test_parse_new_message_frame(new_message_frame):
    frame = parse_frame(json.dumps(new_message_frame))

    assert isinstance(frame, NewMessageFrame)
    assert frame.payload.message.sender.name == "Sam"
    assert frame.payload.message.message_type == "text"


def test_parse_accepts_bytes():
    raw = b'{"type": "message:read", "payload": {"messageId": "m1", "readAt": "2026-10-18T10:00:00Z"}}'
    frame = parse_frame(raw)

    assert isinstance(frame, ReadReceiptFrame)
    assert frame.payload.message_id == "m1"


def test_unknown_type_names_the_type():
    with pytest.raises(UnknownFrameTypeError) as exc_info:
        parse_frame('{"type": "call:start", "payload": {}, "timestamp": 1}')

    assert exc_info.value.frame_type == "call:start"
    assert "call:start" in str(exc_info.value)


@pytest.mark.parametrize("raw", [
    "not json",
    "[1, 2, 3]",
    '{"payload": {}}',
    '{"type": 7, "payload": {}}',
    '{"type": "message:read", "payload": {"messageId": "m1"}}',
    '{"type": "typing:stop", "payload": {}, "timestamp": "yesterday"}',
    b"\x80\x81\x82\x83",
])
def test_malformed_frames(raw):
    with pytest.raises(MalformedFrameError):
        parse_frame(raw)


def test_to_json_uses_camel_case_keys():
    data = json.loads(typing_frame(True, user_id="u1", couple_id="c1").to_json())

    assert data["type"] == "typing:start"
    assert data["payload"] == {"userId": "u1", "coupleId": "c1"}
    assert isinstance(data["timestamp"], int)


def test_presence_frame_carries_last_seen():
    frame = presence_frame(False, "u2")
    data = json.loads(frame.to_json())

    assert isinstance(frame, PresenceOfflineFrame)
    assert data["payload"]["userId"] == "u2"
    assert data["payload"]["lastSeen"]


def test_frames_are_immutable():
    frame = error_frame("boom")

    with pytest.raises(ValidationError):
        frame.timestamp = 0
