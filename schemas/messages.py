from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

MessageType = Literal["text", "emoji", "sticker", "image", "video", "voice"]


class CamelModel(BaseModel):
    """Wire models use camelCase keys; Python code uses the snake_case field names."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class UserPublic(CamelModel):
    id: str
    name: str
    avatar_url: Optional[str] = None
    last_seen: Optional[datetime] = None

class Reaction(CamelModel):
    id: str
    message_id: str
    user_id: str
    emoji: str
    created_at: datetime

class Message(CamelModel):
    id: str
    couple_id: str
    sender_id: str
    content: str
    message_type: MessageType = "text"
    media_url: Optional[str] = None
    read_at: Optional[datetime] = None
    created_at: datetime

class MessageWithSender(Message):
    sender: UserPublic
    reactions: list[Reaction] = Field(default_factory=list)
