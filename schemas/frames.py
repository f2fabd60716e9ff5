"""Wire frames exchanged between a chat room and its clients.

Every frame is ``{"type": ..., "payload": {...}, "timestamp": <ms epoch>}``. The set of
types is closed; each type has its own model and ``Frame`` is the tagged union over them,
discriminated on ``type``.
"""
import json
import time
from datetime import datetime, timezone
from typing import Annotated, Literal, Optional, Union

from pydantic import Field, TypeAdapter, ValidationError

from exceptions import MalformedFrameError, UnknownFrameTypeError
from schemas.messages import CamelModel, MessageWithSender, Reaction

MESSAGE_NEW = "message:new"
MESSAGE_READ = "message:read"
MESSAGE_REACTION = "message:reaction"
TYPING_START = "typing:start"
TYPING_STOP = "typing:stop"
PRESENCE_ONLINE = "presence:online"
PRESENCE_OFFLINE = "presence:offline"
ERROR = "error"

FRAME_TYPES = frozenset({
    MESSAGE_NEW, MESSAGE_READ, MESSAGE_REACTION,
    TYPING_START, TYPING_STOP,
    PRESENCE_ONLINE, PRESENCE_OFFLINE,
    ERROR,
})
# Frames the persistence/API layer may push into a room
EXTERNAL_FRAME_TYPES = frozenset({MESSAGE_NEW, MESSAGE_READ, MESSAGE_REACTION})


def now_ms() -> int:
    return int(time.time() * 1000)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NewMessagePayload(CamelModel):
    message: MessageWithSender

class ReadReceiptPayload(CamelModel):
    message_id: str
    read_at: datetime

class ReactionPayload(CamelModel):
    reaction: Reaction
    message_id: str

class TypingPayload(CamelModel):
    # Clients may omit user_id; the room always overwrites it with the sender's id
    user_id: Optional[str] = None
    couple_id: Optional[str] = None

class PresencePayload(CamelModel):
    user_id: str
    last_seen: datetime

class ErrorPayload(CamelModel):
    message: str


class BaseFrame(CamelModel):
    timestamp: int = Field(default_factory=now_ms)

    def to_json(self, **kwargs) -> str:
        return self.model_dump_json(by_alias=True, **kwargs)


class NewMessageFrame(BaseFrame):
    type: Literal["message:new"] = MESSAGE_NEW
    payload: NewMessagePayload

class ReadReceiptFrame(BaseFrame):
    type: Literal["message:read"] = MESSAGE_READ
    payload: ReadReceiptPayload

class ReactionFrame(BaseFrame):
    type: Literal["message:reaction"] = MESSAGE_REACTION
    payload: ReactionPayload

class TypingStartFrame(BaseFrame):
    type: Literal["typing:start"] = TYPING_START
    payload: TypingPayload

class TypingStopFrame(BaseFrame):
    type: Literal["typing:stop"] = TYPING_STOP
    payload: TypingPayload

class PresenceOnlineFrame(BaseFrame):
    type: Literal["presence:online"] = PRESENCE_ONLINE
    payload: PresencePayload

class PresenceOfflineFrame(BaseFrame):
    type: Literal["presence:offline"] = PRESENCE_OFFLINE
    payload: PresencePayload

class ErrorFrame(BaseFrame):
    type: Literal["error"] = ERROR
    payload: ErrorPayload


Frame = Annotated[
    Union[
        NewMessageFrame,
        ReadReceiptFrame,
        ReactionFrame,
        TypingStartFrame,
        TypingStopFrame,
        PresenceOnlineFrame,
        PresenceOfflineFrame,
        ErrorFrame,
    ],
    Field(discriminator="type"),
]

frame_adapter = TypeAdapter(Frame)


def parse_frame(raw: Union[str, bytes]) -> Frame:
    """
    Parse raw transport data into a typed frame.

    Raises:
        UnknownFrameTypeError: the data is a frame object whose ``type`` is not in the protocol
        MalformedFrameError: anything else that is not a valid frame
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError, TypeError) as e:
        raise MalformedFrameError("Invalid message format") from e

    if not isinstance(data, dict) or not isinstance(data.get("type"), str):
        raise MalformedFrameError("Invalid message format")
    if data["type"] not in FRAME_TYPES:
        raise UnknownFrameTypeError(data["type"])

    try:
        return frame_adapter.validate_python(data)
    except ValidationError as e:
        raise MalformedFrameError(f"Invalid {data['type']} frame") from e


def typing_frame(start: bool, user_id: Optional[str], couple_id: Optional[str]) -> Union[TypingStartFrame, TypingStopFrame]:
    payload = TypingPayload(user_id=user_id, couple_id=couple_id)
    if start:
        return TypingStartFrame(payload=payload)
    return TypingStopFrame(payload=payload)


def presence_frame(online: bool, user_id: str) -> Union[PresenceOnlineFrame, PresenceOfflineFrame]:
    payload = PresencePayload(user_id=user_id, last_seen=utcnow())
    if online:
        return PresenceOnlineFrame(payload=payload)
    return PresenceOfflineFrame(payload=payload)


def error_frame(message: str) -> ErrorFrame:
    return ErrorFrame(payload=ErrorPayload(message=message))
