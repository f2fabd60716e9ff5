import time
from datetime import datetime
from typing import Callable, Optional

from logging_config import get_logger
from reconnect import ReconnectionController
from schemas.frames import (
    PRESENCE_OFFLINE,
    PRESENCE_ONLINE,
    TYPING_START,
    TYPING_STOP,
    BaseFrame,
    PresenceOfflineFrame,
    PresenceOnlineFrame,
    TypingStartFrame,
    TypingStopFrame,
)
from constants import TYPING_TIMEOUT_SECONDS

logger = get_logger(__name__)


class PartnerState:
    """
    Partner presence and typing, derived on the client from relayed frames.

    Frames about the local user (another tab of ours) are ignored. The room never
    expires typing, so ``typing`` turns false on its own after ``typing_timeout``
    seconds without a fresh ``typing:start``.
    """

    def __init__(
        self,
        own_user_id: str,
        typing_timeout: float = TYPING_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.own_user_id = own_user_id
        self.typing_timeout = typing_timeout
        self._clock = clock
        self.online = False
        self.last_seen: Optional[datetime] = None
        self._typing_since: Optional[float] = None

    @property
    def typing(self) -> bool:
        if self._typing_since is None:
            return False
        if self._clock() - self._typing_since >= self.typing_timeout:
            self._typing_since = None
        return self._typing_since is not None

    def attach(self, controller: ReconnectionController) -> None:
        for frame_type in (PRESENCE_ONLINE, PRESENCE_OFFLINE, TYPING_START, TYPING_STOP):
            controller.on(frame_type, self.handle_frame)
        controller.on_close(self.reset_typing)

    def handle_frame(self, frame: BaseFrame) -> None:
        if getattr(frame.payload, "user_id", None) == self.own_user_id:
            return
        if isinstance(frame, PresenceOnlineFrame):
            self.online = True
            self.last_seen = frame.payload.last_seen
        elif isinstance(frame, PresenceOfflineFrame):
            self.online = False
            self.last_seen = frame.payload.last_seen
            self._typing_since = None
        elif isinstance(frame, TypingStartFrame):
            self._typing_since = self._clock()
        elif isinstance(frame, TypingStopFrame):
            self._typing_since = None

    def reset_typing(self) -> None:
        self._typing_since = None
