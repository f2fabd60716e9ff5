"""Per-couple realtime room: connection set, presence and typing relay, fan-out."""

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Union, assert_never

from connection import Connection
from exceptions import FrameNotAllowedError, MalformedFrameError, UnknownFrameTypeError
from logging_config import get_logger
from schemas.frames import (
    EXTERNAL_FRAME_TYPES,
    BaseFrame,
    ErrorFrame,
    NewMessageFrame,
    PresenceOfflineFrame,
    PresenceOnlineFrame,
    ReactionFrame,
    ReadReceiptFrame,
    TypingStartFrame,
    TypingStopFrame,
    error_frame,
    parse_frame,
    presence_frame,
    typing_frame,
)

logger = get_logger(__name__)


@dataclass
class RoomMember:
    """A live connection registered in a room."""

    connection: Connection
    user_id: str
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class RoomCoordinator:
    """
    Owns the live connections of one couple and relays frames between them.

    None of the methods suspend: sends go to each connection's own buffer, so every
    operation runs to completion on the event loop before another one starts.
    Delivery is at-most-once; nothing is queued for connections that join later.
    """

    def __init__(self, couple_id: str, clock: Callable[[], float] = time.monotonic):
        self.couple_id = couple_id
        self._clock = clock
        self._members: Dict[str, RoomMember] = {}
        # Evicted after a failed send but not yet disconnected by their transport
        self._evicted: Dict[str, str] = {}
        self.empty_since: Optional[float] = clock()

    @property
    def connection_count(self) -> int:
        return len(self._members)

    @property
    def connection_ids(self) -> List[str]:
        return list(self._members)

    @property
    def online_user_ids(self) -> List[str]:
        return sorted({member.user_id for member in self._members.values()})

    def has_connection(self, connection_id: str) -> bool:
        return connection_id in self._members

    def is_idle(self, grace_seconds: float) -> bool:
        """True once the room has had no connections for at least ``grace_seconds``.

        A connection evicted after a failed send still has a transport until it is
        disconnected, so the room is not idle while any of those are outstanding.
        """
        if self._members or self._evicted or self.empty_since is None:
            return False
        return self._clock() - self.empty_since >= grace_seconds

    def accept(self, connection: Connection, user_id: str) -> str:
        """Register a connection, announce it to the others, and return its id."""
        connection_id = str(uuid.uuid4())
        already_online = {m.user_id for m in self._members.values()} - {user_id}

        self._members[connection_id] = RoomMember(connection=connection, user_id=user_id)
        self.empty_since = None
        logger.info(
            f"Connection {connection_id} (user {user_id}) joined room {self.couple_id} "
            f"(connections: {len(self._members)})"
        )

        self.broadcast(presence_frame(True, user_id), exclude_connection_id=connection_id)

        # Presence snapshot so the newcomer learns who is already here
        for other_user_id in sorted(already_online):
            self._send_to(connection_id, presence_frame(True, other_user_id))

        return connection_id

    def handle_inbound_frame(self, connection_id: str, raw_frame: Union[str, bytes]) -> None:
        member = self._members.get(connection_id)
        if member is None:
            logger.debug(f"Ignoring frame from unknown connection {connection_id} in room {self.couple_id}")
            return

        try:
            frame = parse_frame(raw_frame)
        except UnknownFrameTypeError as e:
            logger.debug(f"Unknown frame type {e.frame_type!r} from connection {connection_id}")
            self._send_to(connection_id, error_frame(str(e)))
            return
        except MalformedFrameError as e:
            logger.debug(f"Malformed frame from connection {connection_id}: {e}")
            self._send_to(connection_id, error_frame("Invalid message format"))
            return

        match frame:
            case TypingStartFrame() | TypingStopFrame():
                stamped = typing_frame(
                    isinstance(frame, TypingStartFrame), user_id=member.user_id, couple_id=self.couple_id
                )
                self.broadcast(stamped, exclude_connection_id=connection_id)
            case NewMessageFrame() | ReadReceiptFrame() | ReactionFrame():
                self.broadcast(frame, exclude_connection_id=connection_id)
            case PresenceOnlineFrame() | PresenceOfflineFrame() | ErrorFrame():
                self._send_to(connection_id, error_frame(f"Message type not accepted from clients: {frame.type}"))
            case _:
                assert_never(frame)

    def broadcast(self, frame: BaseFrame, exclude_connection_id: Optional[str] = None) -> int:
        """
        Send ``frame`` to every live connection except the excluded one.

        A connection whose send fails is evicted and fan-out carries on with the rest.
        Never raises for per-connection failures.

        Returns:
            Number of connections the frame was handed to
        """
        text = frame.to_json()
        targets = [(cid, m) for cid, m in self._members.items() if cid != exclude_connection_id]
        if not targets:
            logger.debug(f"No recipients for {frame.type} in room {self.couple_id}")
            return 0

        delivered = 0
        for connection_id, member in targets:
            try:
                member.connection.send(text)
                delivered += 1
            except Exception as e:
                logger.info(f"Evicting connection {connection_id} from room {self.couple_id}: {e}")
                self._evict(connection_id)

        logger.debug(f"Broadcast {frame.type} to {delivered}/{len(targets)} connections in room {self.couple_id}")
        return delivered

    def disconnect(self, connection_id: str) -> bool:
        """
        Remove a connection and tell the remaining ones its user went offline.

        Returns:
            False when the connection was already gone (nothing is broadcast)
        """
        member = self._members.pop(connection_id, None)
        if member is not None:
            user_id = member.user_id
        else:
            user_id = self._evicted.pop(connection_id, None)
        if user_id is None:
            return False

        self._mark_empty_if_needed()
        logger.info(
            f"Connection {connection_id} (user {user_id}) left room {self.couple_id} "
            f"(connections: {len(self._members)})"
        )
        self.broadcast(presence_frame(False, user_id))
        return True

    def external_broadcast(self, frame: BaseFrame) -> int:
        """Push a persisted-message event into the room on behalf of the API layer."""
        if frame.type not in EXTERNAL_FRAME_TYPES:
            raise FrameNotAllowedError(f"Frame type {frame.type!r} cannot be broadcast externally")

        if not self._members:
            logger.info(f"Room {self.couple_id} has no live connections; {frame.type} not delivered in realtime")
            return 0
        return self.broadcast(frame)

    def _send_to(self, connection_id: str, frame: BaseFrame) -> None:
        member = self._members.get(connection_id)
        if member is None:
            return
        try:
            member.connection.send(frame.to_json())
        except Exception as e:
            logger.info(f"Evicting connection {connection_id} from room {self.couple_id}: {e}")
            self._evict(connection_id)

    def _evict(self, connection_id: str) -> None:
        member = self._members.pop(connection_id, None)
        if member is None:
            return
        self._evicted[connection_id] = member.user_id
        self._mark_empty_if_needed()

    def _mark_empty_if_needed(self) -> None:
        if not self._members and not self._evicted and self.empty_since is None:
            self.empty_since = self._clock()
