import asyncio
from typing import Protocol

from fastapi import WebSocket

from constants import OUTBOUND_QUEUE_SIZE
from exceptions import ConnectionClosedError
from logging_config import get_logger

logger = get_logger(__name__)


class Connection(Protocol):
    """What a RoomCoordinator needs from a transport: a non-blocking send."""

    def send(self, text: str) -> None:
        ...


class WebSocketConnection:
    """
    Adapts a FastAPI WebSocket to the non-blocking ``send`` a room fans out through.

    Frames are buffered per connection and written by ``run_writer``, so one slow
    client never holds up delivery to the others. When the buffer is full the frame
    is dropped for this connection only.
    """

    def __init__(self, websocket: WebSocket, max_pending: int = OUTBOUND_QUEUE_SIZE):
        self.websocket = websocket
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=max_pending)
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, text: str) -> None:
        if self._closed:
            raise ConnectionClosedError("Connection is closed")
        try:
            self._queue.put_nowait(text)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(f"Outbound buffer full, dropping frame (dropped so far: {self.dropped})")

    def close(self) -> None:
        self._closed = True

    async def run_writer(self) -> None:
        """Write buffered frames until the transport fails or the task is cancelled."""
        try:
            while True:
                text = await self._queue.get()
                await self.websocket.send_text(text)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # Transport is gone; the next broadcast evicts this connection
            logger.info(f"Websocket write failed, marking connection closed: {e}")
            self._closed = True
