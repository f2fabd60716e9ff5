"""Durable client-side queue of messages that could not be sent yet."""

import asyncio
import os
import tempfile
import uuid
from typing import Awaitable, Callable, List, Optional

from pydantic import Field, TypeAdapter, ValidationError

from constants import OFFLINE_QUEUE_PATH
from logging_config import get_logger
from schemas.frames import now_ms
from schemas.messages import CamelModel, MessageType

logger = get_logger(__name__)


class OutgoingMessage(CamelModel):
    """What the user asked to send: the body of a message-creation request."""

    content: str
    message_type: MessageType = "text"
    media_url: Optional[str] = None


class QueuedMessage(OutgoingMessage):
    local_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    enqueued_at: int = Field(default_factory=now_ms)

    def to_outgoing(self) -> OutgoingMessage:
        return OutgoingMessage(content=self.content, message_type=self.message_type, media_url=self.media_url)


_queue_adapter = TypeAdapter(List[QueuedMessage])


class JsonFileQueueStore:
    """Stores the queue as a JSON array in a single file, replaced atomically on save."""

    def __init__(self, path: str = OFFLINE_QUEUE_PATH):
        self.path = path

    def load(self) -> List[QueuedMessage]:
        try:
            with open(self.path, "rb") as f:
                return _queue_adapter.validate_json(f.read())
        except FileNotFoundError:
            return []
        except (ValidationError, ValueError) as e:
            logger.warning(f"Offline queue at {self.path} is unreadable, starting empty: {e}")
            return []

    def save(self, messages: List[QueuedMessage]) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".offline-queue-", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(_queue_adapter.dump_json(messages, by_alias=True))
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise


class OfflineQueue:
    """
    FIFO of unsent messages, persisted on every change.

    ``drain`` sends entries one at a time in enqueue order and stops at the first
    failure, so later messages are never sent ahead of an earlier one.
    """

    def __init__(self, store: Optional[JsonFileQueueStore] = None, online: bool = True):
        self.store = store or JsonFileQueueStore()
        self.online = online
        self._messages: List[QueuedMessage] = self.store.load()
        self._drain_lock = asyncio.Lock()
        if self._messages:
            logger.info(f"Loaded {len(self._messages)} queued messages from {self.store.path}")

    def __len__(self) -> int:
        return len(self._messages)

    @property
    def messages(self) -> List[QueuedMessage]:
        return list(self._messages)

    def set_online(self, online: bool) -> None:
        self.online = online

    def enqueue(self, message: OutgoingMessage) -> str:
        queued = QueuedMessage(content=message.content, message_type=message.message_type, media_url=message.media_url)
        self._persist(self._messages + [queued])
        logger.debug(f"Queued message {queued.local_id} ({len(self._messages)} pending)")
        return queued.local_id

    def remove(self, local_id: str) -> bool:
        remaining = [m for m in self._messages if m.local_id != local_id]
        if len(remaining) == len(self._messages):
            return False
        self._persist(remaining)
        return True

    def clear(self) -> None:
        self._persist([])

    async def drain(self, send_fn: Callable[[OutgoingMessage], Awaitable[None]]) -> int:
        """
        Send queued messages in order until one fails.

        Returns:
            Number of messages sent and removed
        """
        if not self.online or not self._messages:
            return 0

        sent = 0
        async with self._drain_lock:
            for queued in list(self._messages):
                if not self.online:
                    break
                if all(m.local_id != queued.local_id for m in self._messages):
                    # Removed by someone else while we were sending earlier entries
                    continue
                try:
                    await send_fn(queued.to_outgoing())
                except Exception as e:
                    logger.warning(f"Failed to send queued message {queued.local_id}, stopping drain: {e}")
                    break
                self.remove(queued.local_id)
                sent += 1

        if sent:
            logger.info(f"Drained {sent} queued messages ({len(self._messages)} still pending)")
        return sent

    def _persist(self, messages: List[QueuedMessage]) -> None:
        # Memory only changes once the new list is safely on disk
        self.store.save(messages)
        self._messages = messages
